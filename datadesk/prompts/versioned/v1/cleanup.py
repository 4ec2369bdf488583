# datadesk/prompts/versioned/v1/cleanup.py

CLEANUP_SYSTEM_PROMPT = (
    "You are a precise database cleaner. Return only JSON with a 'results' array. "
    "Preserve nulls. Set 'needsReview' for anything ambiguous."
)

CLEANUP_USER_PROMPT = """
Analyze and clean the following {COUNT} database records.

RULES
- Dates -> ISO format (YYYY-MM-DD or ISO 8601)
- Emails -> lowercase, valid format
- Phones -> E.164 format (e.g. +1234567890)
- Names -> trimmed, capitalized ("john" -> "John")
- Fix obvious typos ("Jhon" -> "John", "gnail.con" -> "gmail.com")
- Preserve NULL or empty values when they look intentional; never invent missing data
- Never change the key field "{KEY_FIELD}"
- If a value is ambiguous or risky to change, set needsReview and explain in suggestions

OUTPUT
Return {{"results": [...]}} with exactly {COUNT} items, in the same order as the records:
{{
  "cleaned": {{ ...corrected values, same columns... }},
  "changes": {{"field": "reason"}},
  "needsReview": true | false,
  "suggestions": "required when needsReview is true"
}}
If nothing needs changing, return an empty "changes" object.

RECORDS
{ROWS}
""".strip()

KEY_FIELD_SYSTEM_PROMPT = "You identify likely primary key fields from a database row."

KEY_FIELD_USER_PROMPT = """
Given one database row as JSON, name the column best suited as the unique key for updates:
unique, likely used in WHERE clauses, commonly named like id, uuid, user_id.

Return only the column name as plain text. If unsure, return id.

Row:
{ROW}
""".strip()
