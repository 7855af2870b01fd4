"""External services: web fetching, LLM completions and blob storage."""
