# Persona for every completion: short answers, in Japanese.
SYSTEM_PROMPT = "You are a helpful chat bot assistant. Please answer shortly, and in Japanese."

DEFAULT_MODEL = "gpt-4-1106-preview"

# Fragments of a conversation are joined into one user message with this.
FRAGMENT_SEPARATOR = " "
