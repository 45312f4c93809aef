# conftest.py
import sys
import os

# プロジェクトルートを sys.path の先頭に追加（未インストールでも company_site_resolver を import できるように）
ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, ROOT)
