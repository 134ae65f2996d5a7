"""OpenAI completion client and prompt constants."""
