"""Built-in personas used when the config does not define any."""

from .config import RoleDetails, RoleExample

DEFAULT_ROLE = "assistant"

DEFAULT_ROLES = (
    RoleDetails(
        name="assistant",
        description="Helpful general-purpose assistant",
        prompt=(
            "SYSTEM: You are a helpful assistant taking part in a group chat. "
            "Messages from people are prefixed with USER and your own messages with ASSISTANT. "
            "Answer the last message, be concise and do not prefix your answer with ASSISTANT.\n"
            "{context}"
        ),
    ),
    RoleDetails(
        name="terse",
        description="Short, to the point answers",
        prompt="SYSTEM: Answer in as few words as possible.\n{context}",
        examples=(
            RoleExample(user="What is the capital of France?", assistant="Paris."),
            RoleExample(user="How are you?", assistant="Fine."),
        ),
    ),
)
