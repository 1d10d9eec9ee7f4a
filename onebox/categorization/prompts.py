"""Prompt templates for categorization and reply generation."""

CATEGORIZATION_SYSTEM_PROMPT = (
    "You are an email classification assistant. Respond with the category name only."
)

CATEGORIZATION_PROMPT = """
You are a highly accurate email classification expert. Analyze the following email and categorize it into EXACTLY one of the following categories based on the sender's primary intent. Your response must be ONLY the category name.

Categories and their strict definitions:
- Interested: The sender expresses a clear and positive interest in a product, service, or partnership. They are asking for more information, a demo, or next steps.
- Meeting Booked: The primary purpose of the email is to schedule, confirm, reschedule, or cancel a specific meeting, call, or appointment.
- Not Interested: The sender explicitly states they are not interested, are declining an offer, or that it is not a good time.
- Spam: The email is unsolicited marketing, a newsletter, a promotional offer, a suspicious link, or clearly irrelevant to business operations.
- Out of Office: This is an automated reply indicating the person is unavailable, on vacation, or out of the office.

---
Email Subject: {subject}
Email Body: {body}
---

Category:
""".strip()

REPLY_SYSTEM_PROMPT = (
    "You are a professional email assistant. Generate helpful, concise, and personalized email replies."
)

REPLY_PROMPT = """
Based on the following email and relevant context, generate a professional, personalized reply:

ORIGINAL EMAIL:
Subject: {subject}
From: {sender}
Body: {body}

RELEVANT CONTEXT:
{context}

Generate a professional, concise reply that:
1. Acknowledges their email appropriately
2. Uses the provided context when relevant
3. Maintains a professional tone
4. Includes appropriate next steps when applicable

Reply:
""".strip()

# Keyword rules checked in order before any LLM call
OUT_OF_OFFICE_KEYWORDS = (
    'out of office', 'auto-reply', 'autoreply', 'automatic reply',
    'on vacation', 'i will be out of the office',
)

MEETING_KEYWORDS = (
    'meeting confirmed', 'meeting request', 'invitation:', 'zoom.us/j/',
    'calendar invite', 'scheduled:', 'confirmed:',
)

NOT_INTERESTED_KEYWORDS = (
    'not interested', 'no longer interested', 'not a good fit',
    'not looking for', 'decline your invitation',
)

SPAM_KEYWORDS = (
    'unsubscribe', 'view in browser', 'no-reply@', 'noreply@', 'marketing',
    'newsletter', 'promotion', 'special offer', 'limited time deal',
)

REPLY_CONFIDENCE_INDICATORS = ('meeting', 'link', 'schedule', 'calendar', 'call')
