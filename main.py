# main.py
import argparse
import asyncio
import logging
import os
import random

from dotenv import load_dotenv

from company_site_resolver.csv_data_manager import CsvDataManager, company_from_row
from company_site_resolver.gemini_scorer import GeminiScorer
from company_site_resolver.page_fetcher import PageFetcher
from company_site_resolver.search_client import build_search_providers
from company_site_resolver.workflow import URL_SCORE_THRESHOLD, find_best_company_url

# --------------------------------------------------
# ロギング設定
# --------------------------------------------------
os.makedirs("logs", exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.FileHandler("logs/app.log", encoding="utf-8"),
        logging.StreamHandler(),
    ],
)
log = logging.getLogger(__name__)

# .env 読み込み
load_dotenv()

# --------------------------------------------------
# 実行オプション（.env）
# --------------------------------------------------
INPUT_CSV_PATH = os.getenv("INPUT_CSV_PATH", "data/companies.csv")
OUTPUT_CSV_PATH = os.getenv("OUTPUT_CSV_PATH", "data/output.csv")
MAX_ROWS = int(os.getenv("MAX_ROWS", "0"))
SLEEP_BETWEEN_SEC = float(os.getenv("SLEEP_BETWEEN_SEC", "0"))
JITTER_RATIO = float(os.getenv("JITTER_RATIO", "0.30"))


def jittered_seconds(base: float, ratio: float) -> float:
    if base <= 0 or ratio <= 0:
        return max(0.0, base)
    low = max(0.0, base * (1.0 - ratio))
    high = base * (1.0 + ratio)
    return random.uniform(low, high)


async def process(input_path: str, output_path: str, max_rows: int = 0, threshold: float = URL_SCORE_THRESHOLD) -> int:
    providers = build_search_providers()
    fetcher = PageFetcher()
    scorer = GeminiScorer()
    processed = 0

    with CsvDataManager(input_path, output_path) as manager:
        for row in manager:
            if max_rows and processed >= max_rows:
                break
            company = company_from_row(row)
            if not company.name:
                log.warning("会社名が空の行をスキップ: %s", row)
                continue
            try:
                result = await find_best_company_url(
                    company, providers, fetcher=fetcher, scorer=scorer, threshold=threshold
                )
            except Exception as e:
                log.error("[%s] エラー: %s", company.name, e, exc_info=True)
                result = None
            manager.save_company_data(row, result)
            log.info("[%s] 保存完了: homepage=%s", company.name, result.url if result else "")
            processed += 1

            # 1社ごとのスリープ（±JITTERでレート制限回避）
            if SLEEP_BETWEEN_SEC > 0:
                await asyncio.sleep(jittered_seconds(SLEEP_BETWEEN_SEC, JITTER_RATIO))

    log.info("全処理終了: %d 社", processed)
    return processed


def main() -> int:
    parser = argparse.ArgumentParser(description="Resolve official websites and HQ addresses for companies in a CSV")
    parser.add_argument("--input", default=INPUT_CSV_PATH, help="input CSV (name, license_number, license_address, description)")
    parser.add_argument("--output", default=OUTPUT_CSV_PATH, help="output CSV path")
    parser.add_argument("--rows", type=int, default=MAX_ROWS, help="process at most N rows (0 = all)")
    parser.add_argument("--threshold", type=float, default=URL_SCORE_THRESHOLD, help="minimum score to accept a homepage")
    args = parser.parse_args()

    asyncio.run(process(args.input, args.output, max_rows=args.rows, threshold=args.threshold))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
