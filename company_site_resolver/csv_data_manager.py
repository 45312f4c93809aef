import csv
import os
from typing import Dict, Iterator, Optional

from .models import CompanyInfo, CompanySearchResult

RESULT_FIELDS = ["homepage", "homepage_score", "homepage_reason", "headquarters_address"]


def _clean(val: Optional[str]) -> Optional[str]:
    v = (val or "").strip()
    return v or None


def company_from_row(row: Dict[str, str]) -> CompanyInfo:
    return CompanyInfo(
        name=(row.get("name") or "").strip(),
        license_number=(row.get("license_number") or "").strip(),
        license_address=_clean(row.get("license_address")),
        description=_clean(row.get("description")),
    )


class CsvDataManager:
    def __init__(self, input_path: str, output_path: str):
        self.input_path = input_path
        self.output_path = output_path
        out_dir = os.path.dirname(self.output_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        # 入力は先に全件読み込み、出力は1行ずつ書き出す
        with open(self.input_path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            base_fields = list(reader.fieldnames or [])
            self.rows = list(reader)
        self.fieldnames = base_fields + [c for c in RESULT_FIELDS if c not in base_fields]
        self.output_file = open(self.output_path, mode="w", newline="", encoding="utf-8")
        self.writer = csv.DictWriter(self.output_file, fieldnames=self.fieldnames)
        self.writer.writeheader()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.output_file.close()

    def __iter__(self) -> Iterator[Dict[str, str]]:
        return iter(self.rows)

    def save_company_data(self, row: Dict[str, str], result: Optional[CompanySearchResult]):
        out = dict(row)
        out.update({
            "homepage": result.url if result else "",
            "homepage_score": f"{result.score:.2f}" if result else "",
            "homepage_reason": (result.reason or "") if result else "",
            "headquarters_address": (result.headquarters_address or "") if result else "",
        })
        self.writer.writerow(out)
        self.output_file.flush()
        os.fsync(self.output_file.fileno())
