"""Naver URLs, selector fallback lists, detection phrases and browser profiles."""

# ── URLs ─────────────────────────────────────────────────────────────────────

NAVER_BASE = "https://www.naver.com"
NAVER_LOGIN_URL = "https://nid.naver.com/nidlogin.login?mode=form"
NAVER_LOGIN_HOST = "nid.naver.com"
SMARTSTORE_BASE = "https://smartstore.naver.com"
SMARTSTORE_HOST = "smartstore.naver.com"
BLOG_BASE = "https://blog.naver.com"
BLOG_HOST = "blog.naver.com"
BLOG_POST_LIST_URL = f"{BLOG_BASE}/PostList.naver"
BLOG_POSTS_PER_PAGE = 5

CHROME_RELEASES_URL = (
    "https://chromiumdash.appspot.com/fetch_releases?channel=Stable&platform=Windows&num=1"
)

# ── Browser profile ──────────────────────────────────────────────────────────

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
]

CHROMIUM_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor",
]

BROWSER_HEADERS = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
    "Accept-Encoding": "gzip, deflate, br",
    "Cache-Control": "max-age=0",
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

HTTP_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.8,en-US;q=0.5,en;q=0.3",
    "Accept-Encoding": "gzip, deflate, br",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

# Applied to every page before any site script runs.
STEALTH_INIT_SCRIPT = """
(() => {
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    try { delete window.webdriver; } catch (e) {}
    try { delete Object.getPrototypeOf(navigator).webdriver; } catch (e) {}
    for (const key of Object.keys(window)) {
        if (key.startsWith('cdc_') || key.startsWith('$cdc_')) {
            try { delete window[key]; } catch (e) {}
        }
    }
})();
"""

# ── Login selectors (priority order) ─────────────────────────────────────────

LOGGED_OUT_SELECTORS = [
    'a[class*="link_login"]',
    '.gnb_login_wrap a[href*="login"]',
    'a[href*="nidlogin"]',
]

LOGGED_IN_SELECTORS = [
    'a[href*="logout"]',
    '[class*="user_name"]',
    '[class*="my_info"]',
    ".gnb_login_wrap .user",
]

AUTH_COOKIE_NAMES = ["NID_AUT", "NID_SES"]

LOGIN_BUTTON_SELECTORS = [
    'a[class*="link_login"]',
    'a[href*="nidlogin"]',
    'a:has-text("로그인")',
    ".gnb_login_wrap a",
    "#gnb_login_button",
]

ID_FIELD_SELECTORS = [
    'input[name="id"]',
    "#id",
    'input[autocomplete="username"]',
]

PASSWORD_FIELD_SELECTORS = [
    'input[name="pw"]',
    'input[name="password"]',
    "#pw",
    "#password",
    'input[type="password"]',
]

SUBMIT_SELECTORS = [
    "#log\\.login",
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("로그인")',
]

LOGOUT_SELECTORS = [
    'a[href*="logout"]',
    'button:has-text("로그아웃")',
    'a:has-text("로그아웃")',
]

# ── Captcha / security detection ─────────────────────────────────────────────

CAPTCHA_SELECTORS = [
    "#captcha",
    "#captchaimg",
    'input[name="captcha"]',
    "iframe[src*='recaptcha']",
    "iframe[src*='hcaptcha']",
    '[class*="captcha"]',
]

LOGIN_ERROR_SELECTORS = [
    "#err_common",
    ".error_message",
    '[class*="error_msg"]',
    '[role="alert"]',
]

SECURITY_PHRASES = [
    "자동입력 방지",
    "보안문자",
    "보호조치",
    "비정상적인",
    "새로운 기기",
    "captcha",
    "security check",
    "unusual activity",
]

# ── SmartStore extraction ────────────────────────────────────────────────────

REVIEW_CONTAINER_SELECTORS = [
    ".review_list_item",
    ".reviewItems",
    '[data-testid="review-item"]',
    ".review-item",
]

REVIEW_CONTENT_SELECTORS = [".review_content", ".review-text", ".content", "p"]
REVIEW_RATING_SELECTORS = [".rating", ".star-rating", ".review-rating"]
REVIEW_AUTHOR_SELECTORS = [".reviewer", ".review-author", ".user-name"]
REVIEW_DATE_SELECTORS = [".review-date", ".date", ".created-at"]
REVIEW_VERIFIED_SELECTORS = [".verified", ".confirmed", ".purchased"]

PRODUCT_CONTAINER_SELECTORS = [
    ".product_list_item",
    ".productItems",
    '[data-testid="product-item"]',
    ".product-item",
]

PRODUCT_TITLE_SELECTORS = [".product-title", ".title", ".name", "h3", "h4"]
PRODUCT_PRICE_SELECTORS = [".price", ".current-price", ".sale-price"]
PRODUCT_ORIGINAL_PRICE_SELECTORS = [".original-price", ".before-price", ".regular-price"]
PRODUCT_DISCOUNT_SELECTORS = [".discount", ".sale-rate"]
PRODUCT_RATING_SELECTORS = [".rating", ".star-rating"]

# Button and widget labels that sit inside review cards.
CONTENT_EXCLUSION_WORDS = [
    "신고",
    "신고하기",
    "더보기",
    "접기",
    "도움이 돼요",
    "도움돼요",
    "판매자 답글",
    "리뷰 더보기",
    "Report",
    "Show more",
    "Helpful",
]

IMAGE_EXCLUSION_HINTS = ["icon", "sprite"]

# ── Naver Blog extraction ────────────────────────────────────────────────────

BLOG_POST_ROW_SELECTORS = [
    "#postBottomTitleListBody tr",
    "#PostThumbnailAlbumViewArea li",
    ".blog2_post_list li",
]

BLOG_POST_TITLE_SELECTORS = [".title a", "a.pcol2", ".title", "a"]
BLOG_POST_DATE_SELECTORS = [".date", ".se_publishDate", "td.date"]
BLOG_POST_COMMENT_SELECTORS = [".meta_data .num.pcol3", ".comment_count"]
