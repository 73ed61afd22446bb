"""Constants and configuration values for CommentScope."""

# Short-ID Codec Constants
class CodecConstants:
    """Constants for the bvid <-> avid transform."""

    XOR_CODE = 23442827791579  # fixed XOR mask
    MASK_CODE = 2251799813685247  # 2**51 - 1
    MAX_AID = 1 << 51  # guard bit set before encoding
    BASE = 58
    ALPHABET = "FcwAPNKTMug3GV5Lj7EJnHpWsx4tb8haYeviqBz6rkCy12mUSDQX9RdoZf"
    PREFIX = "BV1"
    LENGTH = 12  # total characters in a short-ID
    SWAPS = ((3, 9), (4, 7))  # character permutation applied both ways


# Request Signing Constants
class SignerConstants:
    """Constants for WBI request signing."""

    NAV_URL = "https://api.bilibili.com/x/web-interface/nav"
    KEY_TTL_SECONDS = 3600  # signing keys are refreshed after one hour
    MIXIN_LENGTH = 32
    DENIED_CHARS = "!'()*"
    NAV_OK_CODES = (0, -101)  # -101 means "not logged in", keys still present

    MIXIN_KEY_ENC_TAB = [
        46, 47, 18, 2, 53, 8, 23, 32, 15, 50, 10, 31, 58, 3, 45, 35, 27, 43, 5, 49,
        33, 9, 42, 19, 29, 28, 14, 39, 12, 38, 41, 13, 37, 48, 7, 16, 24, 55, 40,
        61, 26, 17, 0, 1, 60, 51, 30, 4, 22, 25, 54, 21, 56, 59, 6, 63, 57, 62, 11,
        36, 20, 34, 44, 52,
    ]


# Platform API Constants
class PlatformConstants:
    """Endpoints and request defaults for the video platform."""

    SEARCH_URL = "https://api.bilibili.com/x/web-interface/wbi/search/type"
    COMMENTS_URL = "https://api.bilibili.com/x/v2/reply"
    REPLIES_URL = "https://api.bilibili.com/x/v2/reply/reply"

    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    REFERER = "https://www.bilibili.com/"
    REQUEST_TIMEOUT = 20  # seconds per platform call

    SEARCH_PAGE_SIZE = 20  # videos per search page
    SEARCH_MAX_PAGE_SIZE = 50
    SEARCH_MAX_PAGES = 10  # safety ceiling for search pagination
    COMMENT_PAGE_SIZE = 20  # platform maximum for comment listing
    COMMENT_SORT_BY_LIKES = 1
    REPLY_PAGE_SIZE = 20


# Scraping Constants
class ScrapeConstants:
    """Constants for the bounded concurrent scraper."""

    MAX_CONCURRENCY = 5  # videos scraped at once
    REQUEST_DELAY = 0.2  # seconds between page requests
    MAX_PAGES = 50  # per-video page ceiling
    FETCH_REPLIES = True

    MAX_REPLIES_PER_COMMENT = 10  # nested replies kept per comment
    MAX_REPLY_PAGES = 10
    REPLY_DELAY = 0.1  # seconds between reply pages
    REPLY_FETCH_DELAY = 0.05  # seconds between comments' reply fetches


# Filtering Constants
class FilterConstants:
    """Constants for the comment quality filter."""

    MIN_LENGTH = 10  # characters, counted after trimming
    LIKE_DIVISOR = 100
    LIKE_CAP = 20
    REPLY_DIVISOR = 10
    REPLY_CAP = 20
    LENGTH_DIVISOR = 10
    LENGTH_CAP = 30
    KEYWORD_BONUS = 10  # per distinct keyword hit
    KEYWORD_BONUS_CAP = 30
    MAX_SCORE = 100


# Batch Processing Constants
class BatchConstants:
    """Defaults for dynamic LLM batching."""

    MAX_CHARS = 3000  # characters per merged request
    MAX_ITEMS = 15  # comments per merged request
    MIN_ITEMS = 1
    CONCURRENCY = 10  # batches in flight


# LLM Constants
class LLMConstants:
    """Constants for outbound model calls."""

    DEFAULT_API_BASE = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4o-mini"
    MAX_CONCURRENT = 10  # simultaneous model calls per client
    REQUEST_TIMEOUT = 60  # seconds
    MAX_ATTEMPTS = 2  # one call plus one retry
    RETRY_WAIT = 1.0  # seconds between attempts
    TEMPERATURE = 0.3
    CACHE_TTL_HOURS = 24
    CACHE_KEY_LENGTH = 8  # length of cache key for logging
    ERROR_PREVIEW_LENGTH = 500  # response characters quoted in errors


# Task Constants
class TaskConstants:
    """Constants for task orchestration and recovery."""

    HEARTBEAT_TIMEOUT_SECONDS = 3600  # one hour
    SWEEP_INTERVAL_SECONDS = 300
    ORCHESTRATOR_WORKERS = 2  # tasks executed concurrently

    MAX_COMMENTS = 500
    MIN_COMMENTS_PER_VIDEO = 10
    MAX_COMMENTS_PER_VIDEO = 200
    MAX_VIDEOS_PER_KEYWORD = 20
    MIN_VIDEO_DURATION = 30  # seconds
    VIDEO_DATE_RANGE_MONTHS = 0  # 0 disables the publish-date filter
    MIN_VIDEO_COMMENTS = 0

    # Progress checkpoints (percent)
    PROGRESS_SEARCH_START = 0
    PROGRESS_SEARCH_KEYWORDS = 5
    PROGRESS_SCRAPE_START = 20
    PROGRESS_ANALYZE_START = 50
    PROGRESS_ANALYZE_END = 85
    PROGRESS_GENERATE_START = 85
    PROGRESS_REPORT_BUILT = 90
    PROGRESS_REPORT_SAVED = 95
    PROGRESS_DONE = 100


# Report Constants
class ReportConstants:
    """Thresholds for the aggregation engine."""

    STRENGTH_THRESHOLD = 8.0
    WEAKNESS_THRESHOLD = 6.0
    POSITIVE_THRESHOLD = 8.0
    NEUTRAL_THRESHOLD = 5.0
    TYPICAL_GOOD_THRESHOLD = 8.0
    TYPICAL_BAD_THRESHOLD = 5.0
    MAX_TYPICAL_COMMENTS = 3
    MAX_KEYWORDS = 50
    NO_DATA_RECOMMENDATION = "暂无足够数据生成购买建议"

    STOP_WORDS = frozenset([
        "的", "了", "是", "等", "也", "就", "都", "还", "很", "我", "你", "他", "她", "它",
        "我们", "你们", "他们", "这", "那", "这个", "那个", "一个", "一些", "不是", "没有",
        "在", "和", "与", "及", "而", "且", "或", "或者", "因为", "所以", "如果", "但是",
        "而且", "以及", "啊", "呢", "吗", "吧", "哦", "呀", "哈",
    ])


# Brand Normalization Constants
class BrandConstants:
    """Tokens and tables for brand/model cleanup."""

    UNKNOWN_BRAND = "未知"
    GENERIC_MODEL = "通用"
    DESCRIPTIVE_MODELS = frozenset(["新款", "旧款", "基础款", "升级款", "标准版"])

    DEFAULT_ALIASES = {
        "苹果": ["apple", "iphone", "ipad", "mac", "airpods"],
        "戴森": ["dyson"],
        "小米": ["xiaomi", "mi", "redmi"],
        "华为": ["huawei", "honor", "荣耀"],
        "三星": ["samsung", "galaxy"],
        "索尼": ["sony", "playstation", "ps5"],
        "小佩": ["petkit"],
        "CATLINK": ["catlink", "猫猫狗狗"],
    }

    MODEL_PATTERNS = [
        r"(?i)(iPhone|Galaxy|Pixel|Mate|Mi|Redmi|V|G|X|S)\s*(\d+)\s*(Pro|Max|Plus|Ultra|Detect|Slim)(\s+(Pro|Max|Plus|Ultra))?",
        r"(?i)\b(Pura\s+(X|Max)|T[1-4]S?|SCOOPER(\s+SE)?|Young|M1(\s+Pro)?|T\s+Air)\b",
        r"(?i)([A-Z]+)(\d+)\s*(Pro|Max|Plus|Ultra|Detect|Slim)",
        r"(?i)\b([A-Z]+)(\d+)\b",
        r"(?i)\s(Pro|Max|Plus|Ultra)\s",
    ]


# Error Handling Constants
class ErrorConstants:
    """Constants for error handling and retries."""

    MAX_RETRY_ATTEMPTS = 3  # platform call attempts
    RETRY_BASE_DELAY = 1.0  # base delay for exponential backoff
    RETRY_MAX_DELAY = 10.0  # backoff ceiling in seconds


# File and Path Constants
class FileConstants:
    """Constants for file operations."""

    DATA_DIR = ".commentscope"  # task, report and raw comment stores
    CACHE_DIR = ".commentscope/llm_cache"
    RAW_COMMENT_RETENTION_DAYS = 3
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
