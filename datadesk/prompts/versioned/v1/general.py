# datadesk/prompts/versioned/v1/general.py
# Canned markdown for conversational questions; no model call involved.

GENERAL_TEMPLATES = {
    "greeting": (
        "# Hello!\n\n"
        "I'm your data assistant, here to help you find information across our systems.\n\n"
        "## Quick start\n\n"
        "- Ask about **companies, people, or addresses** and I'll search the Entities database\n"
        "- Ask about **tickets or tasks** and I'll check DMS\n"
        '- Type **"help"** anytime for examples'
    ),
    "identity": (
        "# I'm your data assistant\n\n"
        "I'm connected to the **Entities** and **DMS** databases.\n\n"
        "- **Entities**: companies, people, addresses, bank accounts, risk profiles (primary source)\n"
        "- **DMS**: tickets, notes, tasks, reminders\n\n"
        "## Try asking\n\n"
        '- "Show me Google LLC\'s bank accounts"\n'
        '- "Who is assigned to TK218552?"\n'
        '- "List all people in New York"'
    ),
    "capabilities": (
        "# Here's what I can do\n\n"
        "## Entities (primary)\n"
        "- Find companies, people and contacts\n"
        "- Look up addresses, phone numbers and emails\n"
        "- Check bank accounts (IBAN/SWIFT), risk ratings and credit limits\n\n"
        "## DMS (tickets and tasks)\n"
        '- Check ticket status (e.g. "TK218552")\n'
        "- Find notes or reminders and who is assigned to a task\n\n"
        "I correct failing SQL automatically and explain what each query does."
    ),
    "help": (
        "# Need help? Some examples\n\n"
        "## Entities\n"
        '- "What\'s the address of Microsoft Corp?"\n'
        '- "Show me all bank accounts for entity 1001"\n'
        '- "What\'s Acme Inc\'s risk rating?"\n\n'
        "## DMS\n"
        '- "Status of ticket TK218552?"\n'
        '- "List all overdue tasks"\n\n'
        "## General\n"
        '- "Who are you?"\n'
        '- "What can you do?"'
    ),
    "feedback": (
        "# Thank you!\n\n"
        "Glad I could help. Company and people data lives in Entities, tickets and tasks in DMS.\n\n"
        "Anything else I can look up?"
    ),
    "meta": (
        "# About this system\n\n"
        "A natural-language query interface over two databases:\n\n"
        "- **Entities** (primary): companies, people, addresses, bank accounts, risk profiles\n"
        "- **DMS** (legacy): tickets, notes, tasks, reminders\n\n"
        "Questions are routed to the right database, turned into read-only SQL and self-corrected on errors."
    ),
    "default": (
        '# "{QUESTION}"\n\n'
        "This looks like a general question. Here's how I can help:\n\n"
        '- Type **"help"** for examples\n'
        "- Ask about **companies, people, or addresses**\n"
        "- Ask about **tickets or tasks**"
    ),
}
