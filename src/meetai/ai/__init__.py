"""AI reply pipeline -- prompt assembly, LLM access, and chat delivery."""
