from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

# Ce que le front envoie pour rédiger une réponse (noms camelCase hérités du front)
class GenerateAnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_text: str = Field(alias="questionText", min_length=1)
    custom_prompt: Optional[str] = Field(default=None, alias="customPrompt")
    item_details: Optional[Dict[str, Any]] = Field(default=None, alias="itemDetails")

class GenerateAnswerResponse(BaseModel):
    response: str
    success: bool = True

class ConnectionTestResponse(BaseModel):
    connected: bool
    message: str
