"""Post-extraction processing: the LLM content filter and document annotation."""
