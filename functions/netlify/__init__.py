# Netlify Functions entry points (same handlers as the /api routes)
