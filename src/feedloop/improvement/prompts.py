"""Prompt templates for correction, judging, and categorization."""

CORRECTION_SYSTEM_PROMPT = (
    "You rewrite customer support replies. You never copy a reference reply "
    "verbatim; you produce a distinct reply that fixes the reported defect."
)

CORRECTION_PROMPT = """An AI assistant gave the following reply:

Original Prompt:
"{prompt}"

AI Reply:
"{bad_reply}"

{reference_block}

The failure explanation was:
"{explanation}"

Rewrite the AI reply to match the agent's tone, accuracy, and completeness, without copying it. Improve the original reply to avoid the same failure.

Only return the improved reply."""

REFERENCE_BLOCK = """An agent corrected it to:
"{good_reply}\""""

NO_REFERENCE_BLOCK = "No agent correction was supplied; rely on the failure explanation."

JUDGE_SYSTEM_PROMPT = "You are a strict evaluator of customer service replies. Answer with JSON only."

JUDGE_PROMPT = """Rate these two customer service replies on a scale of 1-10:

Original Reply:
"{original}"

Improved Reply:
"{corrected}"

Return only a JSON object with scores:
{{"original_score": X, "improved_score": Y}}"""

CATEGORIZE_SYSTEM_PROMPT = "You classify customer support failures. Answer with a single word."

CATEGORIZE_PROMPT = """Categorize this AI failure explanation into one category:

"{explanation}"

Choose from: {categories}

Return only the category name."""

SUPPORT_PROMPT = """You are replying to a customer support message.
{caution}
Customer message:
"{message}"
{context}
Reply as a helpful assistant."""

CAUTION_LINE = """Based on past failures, this type of query often fails due to: "{category}"
So be especially careful to avoid issues in that area.
"""

PREDICT_CATEGORY_PROMPT = """Based on this customer message, which failure category is most likely to occur?

Message: "{message}"

Common failure categories: {categories}

If none apply, return "none". Otherwise return the most likely category."""
