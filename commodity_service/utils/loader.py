import io
import logging

import numpy as np
import pandas as pd

from .errors import FormatError

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_COLUMNS = ("WTI", "GOLD", "US DOLLAR INDEX")
MISSING_TOKENS = ("", "#N/A")
SUPPORTED_DELIMITERS = (";", ",")


def detect_delimiter(header_line: str) -> str:
    """Detecta o delimitador pelo cabeçalho. ';' tem prioridade (formato europeu)"""
    return ";" if ";" in header_line else ","


def _to_numeric(series: pd.Series) -> pd.Series:
    # Vírgula dentro de um campo já separado é sempre decimal ("1,5" entre aspas em CSV com ",")
    values = series.astype(str).str.strip().str.replace(",", ".", regex=False)
    values = values.mask(values.isin(MISSING_TOKENS))
    return pd.to_numeric(values, errors="coerce")


def _looks_numeric(field: str) -> bool:
    try:
        float(field.replace(",", "."))
        return True
    except ValueError:
        return False


def parse_csv(raw_text: str, delimiter: str = None, required_columns=DEFAULT_REQUIRED_COLUMNS) -> pd.DataFrame:
    """
    Converte texto delimitado em uma tabela retangular de valores numéricos

    Args:
        raw_text: Conteúdo do CSV (cabeçalho obrigatório na primeira linha)
        delimiter: ';' ou ','. Se None, detecta pelo cabeçalho
        required_columns: Colunas que precisam estar presentes e finitas em cada linha

    Returns:
        pd.DataFrame: Linhas válidas em ordem cronológica (ordem do arquivo)

    Raises:
        FormatError: Cabeçalho ausente, coluna obrigatória ausente ou nenhuma linha válida
    """
    try:
        if raw_text is None or not raw_text.strip():
            raise FormatError("Cabeçalho ausente: conteúdo vazio")

        text = raw_text.strip().replace("\r\n", "\n")
        header_line = text.split("\n", 1)[0]

        if delimiter is None:
            delimiter = detect_delimiter(header_line)
        if delimiter not in SUPPORTED_DELIMITERS:
            raise ValueError(f"Delimitador não suportado: {delimiter!r}")

        header = [field.strip() for field in header_line.split(delimiter)]
        named = [field for field in header if field]
        if not named or all(_looks_numeric(field) for field in named):
            raise FormatError(f"Cabeçalho ausente: primeira linha não contém nomes de colunas ({header_line[:50]!r})")

        required_columns = list(required_columns or [])
        missing_cols = [col for col in required_columns if col not in header]
        if missing_cols:
            raise FormatError(f"Colunas obrigatórias não encontradas: {missing_cols}")

        raw = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines="skip"
        )
        raw.columns = [str(col).strip() for col in raw.columns]

        table = pd.DataFrame(index=raw.index)
        for col in raw.columns:
            numeric = _to_numeric(raw[col])
            if col in required_columns or numeric.notna().any():
                table[col] = numeric.astype(float)
            else:
                # Coluna textual (ex: Date) é mantida como está
                table[col] = raw[col].str.strip()

        if required_columns:
            finite = np.isfinite(table[required_columns].to_numpy(dtype=float)).all(axis=1)
        else:
            finite = np.ones(len(table), dtype=bool)

        dropped = int((~finite).sum())
        if dropped:
            logger.warning(f"{dropped} linhas descartadas por valores ausentes ou não finitos")

        table = table.loc[finite].reset_index(drop=True)

        if table.empty:
            raise FormatError("Nenhuma linha válida após a validação")

        logger.info(f"CSV carregado: {len(table)} registros válidos, colunas: {list(table.columns)}")
        return table

    except FormatError:
        raise
    except Exception as e:
        logger.exception("Erro ao interpretar CSV")
        raise


def load_csv(path: str, delimiter: str = None, required_columns=DEFAULT_REQUIRED_COLUMNS, encoding: str = "utf-8") -> pd.DataFrame:
    """Lê um arquivo CSV do disco e delega para parse_csv"""
    with open(path, "r", encoding=encoding) as f:
        raw_text = f.read()
    logger.info(f"Arquivo lido: {path}")
    return parse_csv(raw_text, delimiter=delimiter, required_columns=required_columns)
