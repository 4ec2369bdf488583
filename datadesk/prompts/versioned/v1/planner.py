# datadesk/prompts/versioned/v1/planner.py

PLAN_USER_PROMPT = (
    'Interpret this natural language question:\n\n"{QUESTION}"\n\n'
    "{CORRECTIONS}"
    "Return a JSON object with:\n"
    '- "sql": the MySQL SELECT query\n'
    '- "explanation": plain English\n'
    '- "allowsLimit": boolean\n'
    '- "successStatus": boolean\n'
    '- "shouldRetry": boolean\n'
)

CORRECTIONS_BLOCK = (
    "The following attempts failed. Use this feedback to avoid repeating the same mistakes:\n"
    "{ATTEMPTS}\n"
    "Now generate the corrected query.\n\n"
)

CORRECTION_ITEM = "Failed Query {N}: {SQL}\nError: {ERROR}\n"

REJECTED_FEEDBACK = (
    "Your response was rejected: {REASON}.\n"
    "Fix the JSON or the query and respond with one valid JSON object containing "
    '"sql", "explanation", "allowsLimit", "successStatus" and "shouldRetry". No extra text.'
)
