"""設定モジュール: 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- ストア ---
DATA_DIR = Path(os.environ.get("PODPROXY_DATA_DIR", _PROJECT_ROOT / "data"))
STORE_BACKEND: str = os.environ.get("PODPROXY_STORE_BACKEND", "file")

# --- Supabase ---
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.environ.get("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA: str = os.environ.get("SUPABASE_SCHEMA", "podcast_proxy")

# --- GitHub (トリガー / 公開データ) ---
GITHUB_OWNER: str = os.environ.get("GITHUB_OWNER", "")
GITHUB_REPO: str = os.environ.get("GITHUB_REPO", "podcast-system")
GITHUB_TOKEN: str = os.environ.get("GITHUB_TOKEN", "")
GITHUB_API_URL = "https://api.github.com"
PAGES_BASE_URL: str = os.environ.get(
    "PAGES_BASE_URL", f"https://{GITHUB_OWNER}.github.io/{GITHUB_REPO}"
)

# --- Internet Archive ---
IA_ACCESS_KEY: str = os.environ.get("IA_ACCESS_KEY", "")
IA_SECRET_KEY: str = os.environ.get("IA_SECRET_KEY", "")
IA_S3_URL = "https://s3.us.archive.org"
IA_DOWNLOAD_URL = "https://archive.org/download"

# --- iTunes ---
ITUNES_SEARCH_URL = "https://itunes.apple.com/search"
ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
ITUNES_TOP_URL_TEMPLATE = (
    "https://itunes.apple.com/{country}/rss/toppodcasts/limit={limit}/explicit=true/json"
)
SEARCH_LIMIT = 25
TOP_LIMIT = 25
TOP_COUNTRIES = ["IL", "US", "GB"]

# --- User-Agent ---
FEED_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36"
)
PROVIDER_USER_AGENT = "PodcastProxy/1.0"
FEED_ACCEPT = "application/rss+xml, application/xml, text/xml, */*"

# --- リクエスト設定 ---
MAX_REDIRECTS = 10
REQUEST_TIMEOUT = 30  # 秒
DOWNLOAD_CHUNK_SIZE = 64 * 1024
UPDATE_FEEDS_DELAY = 0.5  # 秒 (フィード更新の間隔)
LOOKUP_DELAY = 0.1  # 秒 (iTunes lookup の間隔)

# --- ポーリング ---
POLL_MAX_ATTEMPTS = 60
POLL_INTERVAL = 2.0  # 秒

# --- 抽出 ---
CHANNEL_DESCRIPTION_MAX = 500
EPISODE_DESCRIPTION_MAX = 300
DEFAULT_ENCLOSURE_TYPE = "audio/mpeg"

# --- ダウンロード ---
TEMP_DIR = Path(os.environ.get("PODPROXY_TEMP_DIR", _PROJECT_ROOT / "temp"))

# --- ログ ---
LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
