# Central place for provider constants
FB_GRAPH_URL = "https://graph.facebook.com/v21.0"
IG_GRAPH_URL = "https://graph.facebook.com/v21.0"

LINKEDIN_API_URL = "https://api.linkedin.com"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_API_VERSION = "202405"

WORDPRESS_REST_PREFIX = "/wp/v2"

FB_SCOPES = ("pages_manage_posts", "pages_read_engagement")
IG_SCOPES = ("instagram_basic", "instagram_content_publish", "pages_show_list")
LINKEDIN_SCOPES = ("w_organization_social", "r_organization_social", "rw_organization_admin")

# Connections expiring within this many hours are reported as needing attention
TOKEN_EXPIRY_SOON_HOURS = 72
SECONDS_PER_HOUR = 3600
