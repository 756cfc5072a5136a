from dataclasses import dataclass


class PipelineError(Exception):
    """Erro base do pipeline de features e treinamento"""


class FormatError(PipelineError, ValueError):
    """Entrada malformada: cabeçalho ausente, coluna obrigatória ausente ou nenhuma linha válida"""


class InsufficientDataError(PipelineError, ValueError):
    """Histórico curto demais para o tamanho de janela solicitado"""


class NumericInstabilityError(PipelineError, ArithmeticError):
    """
    NaN/inf detectado após a normalização ou após um epoch de treinamento

    Carrega o contexto disponível (coluna, linha, epoch) para diagnóstico.
    """

    def __init__(self, message, column=None, row=None, epoch=None):
        super().__init__(message)
        self.column = column
        self.row = row
        self.epoch = epoch


class PreconditionViolation(PipelineError, RuntimeError):
    """Erro de programação do chamador (ex: iniciar treinamento com outro em andamento)"""


@dataclass(frozen=True)
class NotFound:
    """Resultado de um load sem artefato salvo sob o nome pedido. Não é uma exceção."""
    name: str

    def __bool__(self):
        return False
