"""
Prompt Templates for SupportDesk Chat.

Builds the system prompt for the support assistant.
"""

from typing import Any, Dict, List, Optional


class PromptTemplates:
    """
    Manages prompt templates for the support assistant.

    The base prompt can be replaced wholesale through CUSTOM_SYSTEM_PROMPT;
    customer and knowledge sections are always appended.
    """

    BASE_PROMPT = """You are a helpful customer support assistant for {brand}. You should:

CORE GUIDELINES:
- Be professional, friendly, and empathetic
- Provide accurate and helpful information
- Ask clarifying questions when needed
- Keep responses concise but complete

ESCALATION:
- Complex technical issues, billing disputes, security, legal or compliance
  questions should be handed to a human agent. Tell the customer they can
  ask to speak to a person at any time.

RESPONSE STYLE:
- Use clear, non-technical language unless technical details are requested
- Provide step-by-step instructions when applicable
- End by asking if there's anything else you can help with"""

    CUSTOMER_SECTION = """CUSTOMER CONTEXT:
- Name: {name}
- Email: {email}
- Company: {company}
- Account ID: {user_id}

Personalize your responses using this information when appropriate."""

    KNOWLEDGE_SECTION = """RELEVANT DOCUMENTATION:
{snippets}

Use this documentation to provide accurate answers. If the information isn't
in the documentation, say so clearly and offer to connect the customer with
someone who can help."""

    CLOSING = (
        "Remember: if you're unsure about something, it's better to say you "
        "don't know and offer to connect them with someone who can help."
    )

    def __init__(self, brand_name: str = "SupportDesk", custom_prompt: Optional[str] = None):
        self.brand_name = brand_name
        self.custom_prompt = custom_prompt

    def build_system_prompt(
        self,
        customer_info: Optional[Dict[str, Any]] = None,
        knowledge_snippets: Optional[List[str]] = None,
    ) -> str:
        sections = [self.custom_prompt or self.BASE_PROMPT.format(brand=self.brand_name)]

        if customer_info:
            sections.append(self.CUSTOMER_SECTION.format(
                name=customer_info.get("name") or "Not provided",
                email=customer_info.get("email") or "Not provided",
                company=customer_info.get("company") or "Not provided",
                user_id=customer_info.get("userId") or "Not provided",
            ))

        if knowledge_snippets:
            sections.append(self.KNOWLEDGE_SECTION.format(snippets="\n\n".join(knowledge_snippets)))

        sections.append(self.CLOSING)
        return "\n\n".join(sections)
