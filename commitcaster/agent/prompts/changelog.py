"""System prompt for the changelog-rendering stage.

The user message is the tenant's prepared prompt (or the built-in default)
with every template variable already substituted.
"""

CHANGELOG_SYSTEM_PROMPT = """\
You write short developer log entries for a social network feed. Output only \
the entry text, with no preamble, no markdown fences and no quotation marks \
around it."""
