# Ponto de entrada do Azure Functions (procura `app` em function_app.py na raiz)
from commodity_service.function_app import app
