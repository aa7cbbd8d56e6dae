import csv
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from defi_tearsheet.schemas.protocol import ProtocolConfig
from defi_tearsheet.core.logging_config import get_logger

logger = get_logger("universe_csv")

REQUIRED_COLUMNS = {"name", "slug", "gecko_id", "ticker"}

def read_protocol_configs(file_path: str) -> Tuple[List[Dict[str, Any]], List[ProtocolConfig]]:
    """
    Reads a protocol universe CSV with columns:
    name, slug, gecko_id, ticker, category, chain, description
    Returns (raw_rows, configs) keeping file order. Rows without a usable
    slug or CoinGecko id never enter the pipeline.
    """
    results = []
    raw_rows = []
    try:
        with open(file_path, mode='r', encoding='utf-8') as f:
            reader = csv.DictReader(f)

            if not reader.fieldnames:
                logger.warning("csv_empty_headers", path=file_path)
                return [], []

            missing = REQUIRED_COLUMNS - {name.strip() for name in reader.fieldnames}
            if missing:
                logger.warning("csv_missing_columns", path=file_path, missing=sorted(missing))
                return [], []

            for row in reader:
                row = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
                raw_rows.append(row)
                try:
                    config = ProtocolConfig(
                        name=row.get("name") or row.get("slug", ""),
                        slug=row.get("slug", ""),
                        gecko_id=row.get("gecko_id", ""),
                        ticker=row.get("ticker", ""),
                        category=row.get("category", ""),
                        chain=row.get("chain", ""),
                        description=row.get("description", ""),
                    )
                    results.append(config)
                except ValidationError as e:
                    logger.warning("csv_row_error", path=file_path, error=str(e), row=row)
                    continue

    except FileNotFoundError:
        logger.warning("csv_not_found", path=file_path)
        return [], []
    except (OSError, csv.Error) as e:
        logger.error("csv_read_error", path=file_path, error=str(e))
        return [], []

    return raw_rows, results
