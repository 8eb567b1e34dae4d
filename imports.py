import os
import csv
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass, field

from settlement_system.config.rates import Platform
from settlement_system.services.aggregation_service import PlatformAggregator, AggregationService
from settlement_system.services.driver_resolver import DriverResolver, toPlatform

logger = logging.getLogger(__name__)


@dataclass
class ImportStats:
    total: int = 0
    normalized: int = 0
    skipped: int = 0
    errors: int = 0
    error_rows: list = field(default_factory=list)

    def add_error(self, row: int, error: str):
        self.errors += 1
        self.error_rows.append((row, error))

    def get_report(self) -> str:
        report = [
            f"Import statistics:",
            f"Total rows: {self.total}",
            f"Normalized: {self.normalized}",
            f"Skipped: {self.skipped}",
            f"Errors: {self.errors}"
        ]

        if self.error_rows:
            report.append("\nErrors:")
            for row, error in self.error_rows:
                report.append(f"Row {row}: {error}")

        return "\n".join(report)


class DataUtils:
    """Helpers for cleaning exported values"""

    @staticmethod
    def parse_number(value: Any) -> Optional[Decimal]:
        """
        Parse an amount from a platform export.
        "1.234,56 €" -> 1234.56, "1,234.56" -> 1234.56, "12,5" -> 12.5
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, Decimal)):
            return Decimal(value)
        if isinstance(value, float):
            return Decimal(str(value))

        cleaned = str(value).strip().replace("€", "").replace("$", "")
        cleaned = "".join(cleaned.split())
        if not cleaned:
            return None

        if "," in cleaned and cleaned.rfind(",") > cleaned.rfind("."):
            # Comma is the decimal separator, dots are thousands
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")

        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
        return result if result.is_finite() else None

    @staticmethod
    def parse_int(value: Any) -> Optional[int]:
        number = DataUtils.parse_number(value)
        if number is None:
            return None
        return int(number) if number >= 0 else None

    @staticmethod
    def clean_str(value: Any) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned if cleaned else None


def normalize_header(header: Any) -> str:
    return " ".join(str(header or "").split()).casefold()


class BasePlatformImporter:
    """Maps one platform's export headers onto canonical rows"""

    PLATFORM: Platform = None

    # Canonical field -> accepted header spellings, first match wins
    KEY_HEADERS: List[str] = []
    PLATE_HEADERS: List[str] = []
    LABEL_HEADERS: List[str] = []
    VALUE_HEADERS: List[str] = []
    TRIPS_HEADERS: List[str] = []

    def __init__(self):
        self.stats = ImportStats()
        self.utils = DataUtils()

    @staticmethod
    def _pick(row: Dict[str, Any], headers: List[str]) -> Any:
        lookup = {normalize_header(key): value for key, value in row.items()}
        for header in headers:
            value = lookup.get(normalize_header(header))
            if value not in (None, ""):
                return value
        return None

    def normalize_row(self, row: Dict[str, Any], row_num: int) -> Optional[Dict[str, Any]]:
        reference_key = self.utils.clean_str(self._pick(row, self.KEY_HEADERS))
        plate = self.utils.clean_str(self._pick(row, self.PLATE_HEADERS))

        if not reference_key and not plate:
            self.stats.add_error(row_num, "Missing reference key")
            return None

        raw_value = self._pick(row, self.VALUE_HEADERS)
        value = self.utils.parse_number(raw_value)
        if value is None:
            self.stats.add_error(row_num, f"Invalid amount: {raw_value!r}")
            return None

        trips = self.utils.parse_int(self._pick(row, self.TRIPS_HEADERS)) or 0

        return {
            "referenceKey": reference_key,
            "plate": plate,
            "label": self.utils.clean_str(self._pick(row, self.LABEL_HEADERS)) or reference_key or plate,
            "value": value,
            "trips": trips
        }

    def normalize(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        self.stats.total = len(rows)
        normalized = []

        # Row 1 is the header line in the exported file
        for idx, row in enumerate(rows, start=2):
            if not any(self.utils.clean_str(value) for value in row.values()):
                self.stats.skipped += 1
                continue

            canonical = self.normalize_row(row, idx)
            if canonical is None:
                self.stats.skipped += 1
                continue

            normalized.append(canonical)
            self.stats.normalized += 1

        if self.stats.errors:
            logger.warning(f"{self.PLATFORM.value} import: {self.stats.errors} rows rejected")
        return normalized


class UberImporter(BasePlatformImporter):
    PLATFORM = Platform.UBER
    KEY_HEADERS = ['UUID do motorista', 'UUID', 'Driver UUID', 'driver_uuid', 'UUID Motorista']
    LABEL_HEADERS = ['Nome do motorista', 'Driver name', 'Motorista']
    VALUE_HEADERS = ['Pago a si', 'Pago a si (€)', 'Paid to you', 'Net amount', 'Net earnings']
    TRIPS_HEADERS = ['Viagens', 'Trips', 'Viagens (total)']


class BoltImporter(BasePlatformImporter):
    PLATFORM = Platform.BOLT
    KEY_HEADERS = ['Email', 'Driver email', 'Email do motorista']
    LABEL_HEADERS = ['Motorista', 'Driver', 'Nome', 'Driver name']
    VALUE_HEADERS = ['Ganhos brutos (total)|€', 'Ganhos brutos (total)', 'Total Earnings', 'Ganhos brutos (€)']
    TRIPS_HEADERS = ['Viagens terminadas', 'Finished rides', 'Viagens', 'Trips']


class MyPrioImporter(BasePlatformImporter):
    PLATFORM = Platform.MYPRIO
    KEY_HEADERS = ['CARTAO', 'CARTÃO', 'Cartão', 'Card', 'CARD']
    PLATE_HEADERS = ['DESC CARTAO', 'Matrícula', 'MATRICULA', 'Matricula', 'License plate', 'Licence plate',
                     'Placa', 'PLACA']
    VALUE_HEADERS = ['TOTAL', 'Total', 'Valor', 'Valor Total', 'TOTAL (EUR)']


class ViaVerdeImporter(BasePlatformImporter):
    PLATFORM = Platform.VIAVERDE
    KEY_HEADERS = ['OBU', 'Tag', 'Transponder']
    PLATE_HEADERS = ['Matrícula', 'MATRÍCULA', 'Matricula', 'MATRICULA', 'License plate', 'Licence plate']
    VALUE_HEADERS = ['Value', 'Valor', 'TOTAL', 'Total']


IMPORTERS = {
    Platform.UBER: UberImporter,
    Platform.BOLT: BoltImporter,
    Platform.MYPRIO: MyPrioImporter,
    Platform.VIAVERDE: ViaVerdeImporter,
}


def normalize_rows(platform, rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], ImportStats]:
    """Turn raw export rows of one platform into canonical rows for the aggregator"""
    importer = IMPORTERS[toPlatform(platform)]()
    return importer.normalize(rows), importer.stats


def read_csv_rows(path: str, encoding: str = "utf-8-sig") -> List[Dict[str, Any]]:
    """Read an exported CSV, sniffing ';' vs ',' delimiters"""
    with open(path, newline="", encoding=encoding) as handle:
        sample = handle.read(4096)
        handle.seek(0)
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=";,\t")
        except csv.Error:
            dialect = csv.excel
        return list(csv.DictReader(handle, dialect=dialect))


async def import_week(session, week_id: str, files: Dict[Any, str]) -> Dict[str, Any]:
    """
    Import one week's exports and store them as a new aggregation pass.

    files: platform -> CSV path
    """
    rows_by_platform = {}
    stats = {}

    for platform, path in files.items():
        platform = toPlatform(platform)
        if not os.path.exists(path):
            logger.error(f"Import file not found: {path}")
            return {"success": False, "error": f"File not found: {path}"}

        rows, platform_stats = normalize_rows(platform, read_csv_rows(path))
        rows_by_platform[platform] = rows
        stats[platform.value] = platform_stats
        logger.info(f"{platform.value}: {platform_stats.normalized}/{platform_stats.total} rows normalized")

    resolver = DriverResolver.fromSession(session)
    result = PlatformAggregator(resolver).aggregate(week_id, rows_by_platform)
    stored = await AggregationService(session).storePass(result)

    stored["stats"] = {platform: platform_stats.get_report() for platform, platform_stats in stats.items()}
    stored["unmappedEntries"] = [
        {"platform": entry.platform.value, "referenceId": entry.referenceId, "label": entry.label,
         "totalValue": entry.totalValue, "rowCount": entry.rowCount}
        for entry in result.unmapped
    ]
    return stored
