"""Constants shared by the extraction strategies."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Cache TTLs (seconds)
# ---------------------------------------------------------------------------

#: Generic page markdown, stored by the shared cache layer.
GENERIC_TTL: int = 3600

#: Formatted tweet markdown and the raw syndication payload.
TWEET_TTL: int = 3600

#: Scraped profile pages change faster than individual tweets.
PROFILE_TTL: int = 1800

#: Formatted subreddit listings.
REDDIT_TTL: int = 3600

#: Reddit application-only OAuth token (issued for one hour).
REDDIT_TOKEN_TTL: int = 3000

#: Video metadata is derived from the URL alone.
YOUTUBE_TTL: int = 3600

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Browser-like user agent for endpoints that reject non-browser clients.
BROWSER_USER_AGENT: str = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)

#: Default timeout for direct API calls (seconds).
API_TIMEOUT: float = 20.0

# ---------------------------------------------------------------------------
# Twitter / X
# ---------------------------------------------------------------------------

TWEET_SYNDICATION_URL: str = "https://cdn.syndication.twimg.com/tweet-result"

#: Feature switches the syndication endpoint expects from the embed widget.
TWEET_SYNDICATION_FEATURES: str = ";".join(
    [
        "tfw_timeline_list:",
        "tfw_follower_count_sunset:true",
        "tfw_tweet_edit_backend:on",
        "tfw_refsrc_session:on",
        "tfw_fosnr_soft_interventions_enabled:on",
        "tfw_show_birdwatch_pivots_enabled:on",
        "tfw_show_business_verified_badge:on",
        "tfw_duplicate_scribes_to_settings:on",
        "tfw_use_profile_image_shape_enabled:on",
        "tfw_show_blue_verified_badge:on",
        "tfw_legacy_timeline_sunset:true",
        "tfw_show_gov_verified_badge:on",
        "tfw_show_business_affiliate_badge:on",
        "tfw_tweet_edit_frontend:on",
    ]
)

TWEET_SYNDICATION_TOKEN: str = "4c2mmul6mnh"

#: Maximum number of posts taken from a profile page.
PROFILE_MAX_POSTS: int = 10

#: Posts shorter than this (characters) are treated as UI noise.
PROFILE_MIN_POST_LENGTH: int = 10

PROFILE_SCROLL_PIXELS: int = 1000
PROFILE_SCROLL_DELAY_MS: int = 1500

# ---------------------------------------------------------------------------
# Reddit
# ---------------------------------------------------------------------------

REDDIT_PUBLIC_URL: str = "https://www.reddit.com/r/{subreddit}/hot.json"
REDDIT_OAUTH_URL: str = "https://oauth.reddit.com/r/{subreddit}/hot"
REDDIT_TOKEN_URL: str = "https://www.reddit.com/api/v1/access_token"

#: Number of posts fetched from the ``hot`` listing.
REDDIT_LISTING_LIMIT: int = 5

#: Self-text is truncated to this many characters.
REDDIT_SELFTEXT_MAX: int = 500

#: Formatted listings at or below this length are not cached.
REDDIT_MIN_CACHEABLE_LENGTH: int = 100

# ---------------------------------------------------------------------------
# Generic pages
# ---------------------------------------------------------------------------

#: Elements removed before the full-body markdown conversion.
STRIP_TAGS: tuple[str, ...] = ("script", "style", "iframe", "noscript", "svg", "header", "footer", "nav")

#: Scroll the page in half-viewport steps, then return to the top.
SCROLL_SCRIPT: str = """
async () => {
    const step = Math.max(window.innerHeight / 2, 200);
    const height = document.body ? document.body.scrollHeight : 0;
    for (let y = 0; y < height; y += step) {
        window.scrollBy(0, step);
        await new Promise(resolve => setTimeout(resolve, 100));
    }
    window.scrollTo(0, 0);
}
"""

#: Open collapsed sections so their content is part of the DOM text.
EXPAND_SCRIPT: str = """
() => {
    const selector = 'details, [aria-expanded="false"], [class*="collapse"], '
        + '[class*="dropdown"], [class*="accordion"]';
    let count = 0;
    document.querySelectorAll(selector).forEach(el => {
        try {
            el.setAttribute('aria-expanded', 'true');
            el.classList.add('expanded', 'open', 'show');
            if (el.tagName === 'DETAILS') { el.open = true; }
            count += 1;
        } catch (e) {}
    });
    return count;
}
"""

#: ``## <title>`` followed by the raw body text, capped at ``maxLength``.
INNER_TEXT_SCRIPT: str = """
(maxLength) => {
    const title = document.title || 'Untitled Page';
    const body = document.body ? document.body.innerText : 'Could not access document body.';
    return `## ${title}\\n\\n${body.slice(0, maxLength)}`;
}
"""

#: Collect absolute hrefs of every anchor, in document order.
LINKS_SCRIPT: str = """
() => Array.from(document.querySelectorAll('a[href]')).map(a => a.href)
"""

#: Pull post texts, profile name and bio out of a rendered profile page.
PROFILE_SCRIPT: str = """
([username, maxPosts, minLength]) => {
    const clean = (text) => text
        .replace(/\\u00A0/g, ' ')
        .replace(/[·•]/g, '-')
        .replace(/\\s*-\\s*/g, ' - ')
        .replace(/[\\u201C\\u201D]/g, '"')
        .replace(/[\\u2018\\u2019]/g, "'")
        .trim();
    const posts = Array.from(document.querySelectorAll('article')).map(article => {
        const textElement = article.querySelector('[data-testid="tweetText"]');
        if (textElement) {
            return clean(textElement.innerText);
        }
        const raw = article.innerText
            .split(/\\n(?:Reply|Retweet|Like|Share|View|\\d+|Follow)|\\d+K|\\d+M/)[0]
            .replace(/\\s+/g, ' ');
        return clean(raw);
    }).filter(text => text && text.length > minLength).slice(0, maxPosts);
    const nameElement = document.querySelector('[data-testid="UserName"]');
    const profileName = nameElement
        ? ((nameElement.textContent || '').split('\\n')[0] || '').trim() || username
        : username;
    const bioElement = document.querySelector('[data-testid="UserDescription"]');
    const bio = (bioElement && bioElement.textContent ? bioElement.textContent.trim() : '') || 'No bio found.';
    return { profileName, bio, posts };
}
"""
