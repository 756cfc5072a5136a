"""
Serviço de previsão de commodities (WTI, GOLD, US DOLLAR INDEX) com redes
recorrentes.

Submódulos em ``utils``:

* ``loader`` – leitura e validação de CSV (';' ou ',', vírgula decimal).
* ``scaler`` – normalização min-max ou robusta, com inversa por coluna.
* ``dataset`` – janelas deslizantes e split cronológico treino/teste.
* ``controller`` – loop de treinamento cancelável, com histórico por epoch.
* ``sequence_model`` – regressor LSTM/GRU em PyTorch Lightning.
* ``trainer`` – pipeline completo de treinamento e avaliação.
* ``storage`` / ``predictor`` – persistência de artefatos e inferência.
* ``cosmos_client`` – registro de versões e históricos no Cosmos DB.

O ``function_app`` expõe o pipeline como Azure Functions HTTP.
"""
