"""Application constants."""

# User-safe chat messages
CONFIG_ERROR_MSG = (
    "Configuration Error: the AI service is not configured. "
    "Please set OPENAI_API_KEY or connect a managed backend session."
)
NETWORK_ERROR_MSG = "I'm having trouble connecting to the AI service right now. Please try again."

# Scrape failure guidance
SCRAPE_SUGGESTION = (
    "Try again in a few minutes, try a different URL from the same site, "
    "or copy the content manually and add it as text or upload a document."
)

# Source / file types
FILE_TYPE_TEXT = "text"
FILE_TYPE_URL = "url"
FILE_TYPE_PDF = "pdf"
FILE_TYPE_HTML = "html"

# Transport names
TRANSPORT_MANAGED = "managed"
TRANSPORT_READER_DIRECT = "reader"
TRANSPORT_DIRECT = "direct"

# Batch modes and stages
MODE_LIST = "list"
MODE_SITEMAP = "sitemap"
MODE_CRAWL = "crawl"

STAGE_PENDING = "pending"
STAGE_FETCHING_SITEMAP = "fetching_sitemap"
STAGE_EXTRACTING_LINKS = "extracting_links"
STAGE_SCRAPING = "scraping"
STAGE_SCRAPED = "scraped"
STAGE_COMPLETE = "complete"
STAGE_STOPPED = "stopped"
STAGE_CANCELLED = "cancelled"
STAGE_FAILED = "failed"

# Chunking
CHARS_PER_TOKEN = 4

# Hosts never scraped
METADATA_HOSTS = {
    "169.254.169.254",
    "metadata.google.internal",
    "metadata.google",
    "100.100.100.200",
    "fd00:ec2::254",
}
INTERNAL_HOST_SUFFIXES = (".internal", ".local", ".localhost")
