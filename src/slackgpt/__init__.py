"""slackgpt - a Slack bot that answers mentions with OpenAI chat completions.

The process listens to Slack over Socket Mode (no public URL needed), sends
the text of each mention or direct message to the completion API and posts
the answer back to the same conversation.

Components:
- bridge: Socket Mode event loop and per-event dispatch
- supervisor: start-up ordering, signal handling, graceful shutdown
- llm: OpenAI completion client
- slack: event parsing and reply posting
- config: settings loaded from json/yaml/toml/env/ini files
"""

__version__ = "1.0.0"
