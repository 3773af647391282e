"""External services: web search, page fetching, language model."""
