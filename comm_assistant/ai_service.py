"""
AI沟通建议服务 - 基于大模型的对话分析、回复建议与风格分析
大模型回复不可解析时返回固定的兜底内容
"""
import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

from .json_utils import extract_json_object
from .llm_client import LLMClient, LLMClientError
from .models import (
    AIResponse, AnalysisType, ChatTurn, CommunicationInsight, CommunicationMode,
    ConversationData, GeneratedResponse, Importance, InsightCategory,
    ResponseOption, ResponseRequest, ResponseSuggestion, StyleProfile,
    SuggestionTone, SuggestionType,
)

logger = logging.getLogger(__name__)


HEALTHY_SYSTEM_PROMPT = """You are a communication expert and relationship counselor. Your role is to analyze conversations and provide constructive advice that helps people communicate more effectively and build better relationships.

Your responses should always be:
- Empathetic and understanding
- Focused on improving communication
- Respectful of all parties involved
- Aimed at conflict resolution and mutual understanding
- Supportive of healthy relationship dynamics

Never suggest manipulative tactics, aggressive responses, or strategies that could harm relationships. Always prioritize mutual respect, emotional safety, and constructive dialogue."""

ASSERTIVE_SYSTEM_PROMPT = """You are an assertive communication coach. Your role is to help the user state their position clearly and hold their ground in a difficult conversation.

Your responses should always be:
- Direct and unambiguous about what the user needs
- Calm, firm and free of insults
- Built on "I" statements and concrete requests
- Clear about boundaries and consequences the user can actually follow through on

Never suggest deception, guilt-tripping, blame-shifting, or psychological pressure. Being assertive means being honest and firm, not winning at the other person's expense."""

STYLE_SYSTEM_PROMPT = (
    "You are a communication style analyst. Analyze text samples to identify "
    "writing patterns, tone, and communication preferences."
)

SUMMARY_SYSTEM_PROMPT = "You are a conversation analyst. Provide concise, accurate summaries."

ANALYSIS_PROMPT = """
Please analyze this conversation and provide constructive insights:

Conversation Text:
{text}

Participants: {participants}
Overall Tone: {tone}
Emotional Intensity: {intensity}/10

Please provide your analysis in the following JSON format:
{{
  "analysis": "overall analysis of the conversation",
  "suggestions": [
    {{
      "type": "empathy|clarification|solution|acknowledgment",
      "content": "specific suggestion text",
      "rationale": "explanation of why this would help",
      "tone": "supportive|neutral|assertive"
    }}
  ],
  "insights": [
    {{
      "category": "pattern|emotion|topic|opportunity",
      "title": "insight title",
      "description": "detailed description",
      "importance": "low|medium|high"
    }}
  ],
  "confidence": 0.8
}}
"""

ANALYSIS_FOCUS = {
    AnalysisType.QUICK: "Provide a brief analysis focusing on the most important points.",
    AnalysisType.SUGGESTIONS: "Focus primarily on actionable response suggestions.",
    AnalysisType.FULL: "Provide a comprehensive analysis including all aspects.",
}

SUGGESTIONS_PROMPT = """
Conversation Context:
{context}

Target Message: "{target}"

Please suggest 3-5 constructive response options that would help improve communication and understanding. Each suggestion should be:
- Respectful and empathetic
- Clear and direct
- Aimed at resolving misunderstandings
- Appropriate for the conversation tone

Format your response as JSON with this structure:
{{
  "suggestions": [
    {{
      "type": "empathy|clarification|solution|acknowledgment",
      "content": "suggested response text",
      "rationale": "why this response would be helpful",
      "tone": "supportive|neutral|assertive"
    }}
  ]
}}
"""

STYLE_PROMPT = """Analyze the following text samples and identify the user's communication style:

{samples}

Please analyze and return JSON with this structure:
{{
  "tone": "professional|casual|formal|friendly|direct|etc",
  "vocabulary": ["commonly used words or phrases"],
  "sentenceStructure": "short and direct|elaborate and detailed|conversational|etc",
  "communicationPreferences": ["preference patterns like asking questions, using humor, etc"]
}}"""

SUMMARY_PROMPT = """Summarize this conversation in 2-3 sentences, focusing on the main topics and communication dynamics:

{conversation}

Provide a concise summary that captures the key points and emotional tone."""

RESPONSE_JSON_FORMAT = """

Return your response in JSON format:
{
  "response": "main analysis or suggested response",
  "suggestions": ["alternative response 1", "alternative response 2", "alternative response 3"],
  "confidence": 0.8
}"""

MODE_CLOSING = {
    CommunicationMode.HEALTHY: (
        "Please provide constructive response options that will improve "
        "communication and understanding in this situation."
    ),
    CommunicationMode.ASSERTIVE: (
        "Please provide firm, honest response options that state my position "
        "clearly and set boundaries without attacking the other person."
    ),
}

# (提示词, 标题, 语气, 目的)
RESPONSE_OPTION_TEMPLATES = {
    CommunicationMode.HEALTHY: [
        ("Generate an empathetic response that acknowledges their feelings and builds understanding",
         "Empathetic Response", "Empathetic", "build empathy"),
        ("Create a response that asks clarifying questions to better understand their perspective",
         "Clarifying Questions", "Curious", "gain understanding"),
        ("Provide a solution-focused response that moves the conversation forward constructively",
         "Solution-Focused", "Constructive", "find solutions"),
        ("Generate a response that validates their concerns while sharing your viewpoint",
         "Validating Response", "Validating", "validate feelings"),
    ],
    CommunicationMode.ASSERTIVE: [
        ("Generate a calm response that states my position clearly using I statements",
         "Clear Position", "Direct", "state your position"),
        ("Create a response that sets a specific, respectful boundary",
         "Boundary Setting", "Firm", "set a boundary"),
        ("Provide a response that disagrees respectfully and explains my reasoning",
         "Respectful Disagreement", "Confident", "disagree without escalating"),
        ("Generate a response that makes a concrete request for what I need going forward",
         "Concrete Request", "Decisive", "ask for a specific change"),
    ],
}

MODE_TEMPERATURE = {
    CommunicationMode.HEALTHY: 0.7,
    CommunicationMode.ASSERTIVE: 0.8,
}


class AIServiceError(Exception):
    """AI服务错误"""
    pass


def fallback_suggestions() -> List[ResponseSuggestion]:
    """大模型不可用时的固定回复建议"""
    return [
        ResponseSuggestion(
            id="fallback_1",
            type=SuggestionType.CLARIFICATION,
            content="I want to make sure I understand your perspective correctly...",
            rationale="Seeking clarification shows respect and prevents misunderstandings",
            tone=SuggestionTone.SUPPORTIVE,
        ),
        ResponseSuggestion(
            id="fallback_2",
            type=SuggestionType.EMPATHY,
            content="I can see this is important to you...",
            rationale="Acknowledging the other person's feelings helps build connection",
            tone=SuggestionTone.SUPPORTIVE,
        ),
        ResponseSuggestion(
            id="fallback_3",
            type=SuggestionType.SOLUTION,
            content="How can we work together to resolve this?",
            rationale="Focusing on collaboration encourages problem-solving",
            tone=SuggestionTone.NEUTRAL,
        ),
    ]


def fallback_response() -> AIResponse:
    return AIResponse(
        analysis="Unable to complete full analysis. Please try again.",
        suggestions=fallback_suggestions(),
        insights=[
            CommunicationInsight(
                category=InsightCategory.OPPORTUNITY,
                title="Communication Analysis",
                description="Consider reviewing the conversation for opportunities to improve understanding.",
                importance=Importance.MEDIUM,
            )
        ],
        confidence=0.5,
    )


def _as_list(value: Any) -> Optional[list]:
    """缺失视为空列表，类型不对返回 None"""
    if value is None:
        return []
    return value if isinstance(value, list) else None


class AIService:
    """AI沟通建议服务"""

    def __init__(self, client: LLMClient):
        self.client = client

    @property
    def config(self):
        return self.client.config

    async def close(self) -> None:
        await self.client.close()

    # ---------- 对话分析 ----------

    def build_analysis_prompt(
        self, data: ConversationData, analysis_type: AnalysisType = AnalysisType.FULL
    ) -> str:
        prompt = ANALYSIS_PROMPT.format(
            text=data.extracted_text,
            participants=", ".join(data.participants),
            tone=data.conversation_tone.overall_tone.value,
            intensity=data.conversation_tone.emotional_intensity,
        )
        return f"{prompt}\n{ANALYSIS_FOCUS[analysis_type]}"

    def _parse_suggestions(self, items) -> List[ResponseSuggestion]:
        suggestions = []
        for index, item in enumerate(_as_list(items) or []):
            if not isinstance(item, dict):
                continue
            suggestion = ResponseSuggestion.from_dict(item)
            if not suggestion.id:
                suggestion.id = f"suggestion_{index}"
            suggestions.append(suggestion)
        return suggestions

    def parse_ai_response(self, response: str) -> AIResponse:
        """解析分析结果，无法解析时返回兜底结果"""
        parsed = extract_json_object(response)
        if parsed is None:
            logger.error("Failed to parse AI response")
            return fallback_response()

        suggestions = _as_list(parsed.get("suggestions"))
        insights = _as_list(parsed.get("insights"))
        if suggestions is None or insights is None:
            logger.error("AI response has unexpected structure")
            return fallback_response()

        try:
            confidence = float(parsed.get("confidence") or 0.7)
        except (TypeError, ValueError):
            confidence = 0.7

        return AIResponse(
            analysis=str(parsed.get("analysis") or "Analysis completed"),
            suggestions=self._parse_suggestions(suggestions),
            insights=[
                CommunicationInsight.from_dict(item)
                for item in insights
                if isinstance(item, dict)
            ],
            confidence=confidence,
        )

    async def analyze_conversation(
        self,
        data: ConversationData,
        analysis_type: AnalysisType = AnalysisType.FULL,
    ) -> AIResponse:
        """
        分析对话并给出建议

        Raises:
            AIServiceError: 大模型调用失败
        """
        prompt = self.build_analysis_prompt(data, analysis_type)
        try:
            response = await self.client.chat(
                HEALTHY_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=1500,
            )
        except LLMClientError as e:
            logger.error(f"AI analysis failed: {e}")
            raise AIServiceError("Failed to analyze conversation") from e

        return self.parse_ai_response(response)

    async def generate_response_suggestions(
        self, conversation_context: str, target_message: str
    ) -> List[ResponseSuggestion]:
        """针对某条消息生成回复建议，失败时返回兜底建议"""
        prompt = SUGGESTIONS_PROMPT.format(context=conversation_context, target=target_message)
        try:
            response = await self.client.chat(
                HEALTHY_SYSTEM_PROMPT, prompt, temperature=0.6, max_tokens=800,
            )
        except LLMClientError as e:
            logger.error(f"Response generation failed: {e}")
            return fallback_suggestions()

        parsed = extract_json_object(response)
        suggestions = self._parse_suggestions(parsed.get("suggestions")) if parsed else []
        if not suggestions:
            logger.error("Response generation returned no usable suggestions")
            return fallback_suggestions()
        return suggestions

    # ---------- 回复生成 ----------

    def get_system_prompt(self, mode: CommunicationMode) -> str:
        if mode == CommunicationMode.ASSERTIVE:
            return ASSERTIVE_SYSTEM_PROMPT
        return HEALTHY_SYSTEM_PROMPT

    def build_user_prompt(self, request: ResponseRequest) -> str:
        """构建带上下文和用户风格的提示词"""
        prompt = f'Input Message/Text: "{request.input_text}"'

        if request.conversation_context:
            prompt += f"\n\nConversation Context:\n{request.conversation_context}"

        if request.previous_messages:
            prompt += "\n\nPrevious Messages:\n"
            for turn in request.previous_messages[-5:]:
                speaker = "User" if turn.role == "user" else "Other"
                prompt += f'{speaker}: "{turn.content}"\n'

        style = request.style
        if style:
            prompt += (
                "\n\nUser's Communication Style:\n"
                f"- Tone: {style.tone}\n"
                f"- Typical vocabulary: {', '.join(style.vocabulary)}\n"
                f"- Sentence structure: {style.sentence_structure}\n"
                f"- Communication preferences: {', '.join(style.communication_preferences)}\n"
                "\nPlease adapt your suggestions to match this user's natural communication style."
            )

        prompt += f"\n\n{MODE_CLOSING[request.mode]}"
        prompt += RESPONSE_JSON_FORMAT
        return prompt

    async def generate_response(self, request: ResponseRequest) -> GeneratedResponse:
        """
        按沟通模式生成回复

        Raises:
            AIServiceError: 大模型调用失败
        """
        try:
            response = await self.client.chat(
                self.get_system_prompt(request.mode),
                self.build_user_prompt(request),
                temperature=MODE_TEMPERATURE[request.mode],
                max_tokens=1500,
            )
        except LLMClientError as e:
            logger.error(f"AI response generation failed: {e}")
            raise AIServiceError("Failed to generate AI response") from e

        parsed = extract_json_object(response)
        if parsed is None:
            # 非JSON回复直接作为回复内容
            return GeneratedResponse(
                response=response.strip(), suggestions=[], confidence=0.5, mode=request.mode,
            )

        try:
            confidence = float(parsed.get("confidence") or 0.7)
        except (TypeError, ValueError):
            confidence = 0.7

        return GeneratedResponse(
            response=str(parsed.get("response") or ""),
            suggestions=[str(s) for s in _as_list(parsed.get("suggestions")) or []],
            confidence=confidence,
            mode=request.mode,
        )

    async def generate_response_options(
        self,
        text: str,
        mode: CommunicationMode,
        style: Optional[StyleProfile] = None,
    ) -> List[ResponseOption]:
        """按模式生成四种候选回复"""
        prefix = "healthy" if mode == CommunicationMode.HEALTHY else "assertive"
        options = []
        for index, (instruction, title, tone, purpose) in enumerate(RESPONSE_OPTION_TEMPLATES[mode]):
            request = ResponseRequest(
                input_text=f"{instruction}:\n\n{text}",
                mode=mode,
                conversation_context=f"{title} for the conversation above",
                style=style,
            )
            generated = await self.generate_response(request)
            options.append(ResponseOption(
                id=f"{prefix}_{index}",
                title=title,
                content=generated.response,
                tone=tone,
                rationale=f"Designed to {purpose} in the conversation",
            ))
        return options

    # ---------- 风格与摘要 ----------

    async def analyze_user_style(self, text_samples: Sequence[str]) -> StyleProfile:
        """分析用户写作风格，失败时返回默认风格"""
        samples = "\n\n".join(
            f'Sample {index + 1}: "{sample}"' for index, sample in enumerate(text_samples)
        )
        default = StyleProfile(text_samples=list(text_samples), last_updated=datetime.now())

        try:
            response = await self.client.chat(
                STYLE_SYSTEM_PROMPT, STYLE_PROMPT.format(samples=samples),
                temperature=0.3, max_tokens=800,
            )
        except LLMClientError as e:
            logger.error(f"Style analysis failed: {e}")
            return default

        parsed = extract_json_object(response)
        if parsed is None:
            logger.error("Style analysis returned no JSON")
            return default

        return StyleProfile(
            text_samples=list(text_samples),
            tone=parsed.get("tone") or default.tone,
            vocabulary=[str(v) for v in _as_list(parsed.get("vocabulary")) or []],
            sentence_structure=parsed.get("sentenceStructure") or default.sentence_structure,
            communication_preferences=[
                str(p) for p in _as_list(parsed.get("communicationPreferences")) or []
            ],
            last_updated=datetime.now(),
        )

    async def generate_conversation_summary(self, turns: Sequence[ChatTurn]) -> str:
        if not turns:
            return ""

        conversation = "\n".join(f"{turn.role}: {turn.content}" for turn in turns)
        try:
            summary = await self.client.chat(
                SUMMARY_SYSTEM_PROMPT, SUMMARY_PROMPT.format(conversation=conversation),
                model=self.config.summary_model, temperature=0.3, max_tokens=200,
            )
        except LLMClientError as e:
            logger.error(f"Summary generation failed: {e}")
            return f"Conversation with {len(turns)} messages about various topics."
        return summary.strip()
