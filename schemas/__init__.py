# Schemas package for FastAPI validation and LLM structured output
