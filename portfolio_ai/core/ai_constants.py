"""AI assistant constants and prompts.

Centralized configuration for the portfolio assistant: model parameters,
the persona prompt and the canned responses used when the model is not
available.
"""

# Generation parameters
AI_MAX_TOKENS = 1024
AI_TEMPERATURE = 0.7

# Number of previous messages included in the prompt
CONVERSATION_HISTORY_WINDOW = 4

# Source snippets shown to users are truncated to this length
SOURCE_PREVIEW_CHARS = 200

SYSTEM_PROMPT_TEMPLATE = """You are {owner_name}'s AI assistant. Your role is to provide helpful and accurate information about {owner_short_name} based on the knowledge provided below.

KNOWLEDGE BASE:
{knowledge}

INSTRUCTIONS:
- Answer questions about {owner_short_name}'s background, skills, experience, projects, and contact information
- Use only the information provided in the knowledge base above
- Be conversational and friendly, but professional
- If you don't have specific information to answer a question, suggest asking about topics you do know about
- Keep responses concise but informative
- Use markdown formatting for better readability when appropriate
- Always refer to {owner_short_name} in third person (e.g., "{owner_short_name} has experience in..." not "I have experience in...")

CONVERSATION CONTEXT:
{history}

Please respond to the user's question about {owner_name}."""

USER_PROMPT_TEMPLATE = "User question: {message}"

# Keyed by the category of the top retrieved fragment.
CATEGORY_RESPONSE_TEMPLATES = {
    "skills": (
        "Based on {owner_short_name}'s technical background: {content}\n\n"
        "Would you like to know more about any specific technology or skill?"
    ),
    "experience": (
        "Regarding {owner_short_name}'s professional experience: {content}\n\n"
        "Feel free to ask about specific roles or projects {owner_short_name} has worked on."
    ),
    "projects": (
        "About {owner_short_name}'s projects: {content}\n\n"
        "Would you like to learn more about the technologies used or other projects?"
    ),
    "contact": (
        "For contacting {owner_short_name}: {content}\n\n"
        "{owner_short_name} is always open to discussing new opportunities and collaborations."
    ),
    "personal": (
        "About {owner_short_name}: {content}\n\n"
        "Is there anything specific you'd like to know about {owner_short_name}'s background or interests?"
    ),
    "education": (
        "Regarding {owner_short_name}'s education and learning: {content}\n\n"
        "{owner_short_name} believes in continuous learning and staying updated with the latest technologies."
    ),
    "achievements": (
        "One of {owner_short_name}'s achievements: {content}\n\n"
        "Would you like to hear about other milestones?"
    ),
}

GREETING_RESPONSE = (
    "Hello! I'm {owner_name}'s AI assistant. I can help you learn about "
    "{owner_short_name}'s background, skills, experience, and projects. What would you like to know?"
)

GENERIC_RESPONSE = """I'd be happy to help you learn about {owner_name}! I can provide information about:

• **Skills & Technologies** - React, Next.js, TypeScript, Node.js, and more
• **Professional Experience** - Work history and career background
• **Projects** - Portfolio projects and notable work
• **Contact Information** - How to reach {owner_short_name} for opportunities
• **Background** - Personal interests and professional journey

What would you like to know more about?"""

ERROR_MESSAGE = (
    "I apologize, but I encountered an issue processing your request. "
    "Please try again or ask a different question."
)
