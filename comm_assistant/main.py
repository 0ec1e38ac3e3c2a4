"""
沟通助手命令行入口
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .ai_service import AIServiceError
from .assistant import ConversationAssistant, InsufficientTextError
from .models import (
    AnalysisResult, AnalysisType, AssistantConfig, CommunicationMode, LLMConfig,
    RecognizerConfig, StorageConfig,
)
from .storage import StorageError
from .text_recognizer import TextRecognitionError

API_KEY_ENV = "DASHSCOPE_API_KEY"


def setup_logging(verbose: bool = False) -> None:
    """配置日志"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )


def load_config(config_path: str) -> AssistantConfig:
    """从JSON文件加载配置"""
    with open(config_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    return AssistantConfig.from_dict(data)


def create_default_config(api_key: str) -> AssistantConfig:
    """创建默认配置"""
    return AssistantConfig(
        llm_config=LLMConfig(api_key=api_key),
        recognizer_config=RecognizerConfig(api_key=api_key),
        storage_config=StorageConfig(),
    )


def print_result(result: AnalysisResult) -> None:
    data = result.conversation_data
    tone = data.conversation_tone
    print(f"\n=== 对话 {data.id} ===")
    print(f"参与者: {', '.join(data.participants) or '-'}")
    print(f"整体语气: {tone.overall_tone.value} (强度 {tone.emotional_intensity}/10)")
    print(f"关键词: {', '.join(tone.key_topics) or '-'}")
    print(f"沟通模式: {', '.join(tone.communication_patterns) or '-'}")
    for message in data.messages:
        print(f"  [{message.sentiment.value:>8}] {message.sender}: {message.content}")

    if result.analysis:
        print(f"\n分析: {result.analysis}")
    for suggestion in result.suggestions:
        print(f"  - ({suggestion.type.value}) {suggestion.content}")
    for insight in result.insights:
        print(f"  * [{insight.importance.value}] {insight.title}: {insight.description}")


def read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    with open(source, 'r', encoding='utf-8') as f:
        return f.read()


async def run_command(args: argparse.Namespace, config: AssistantConfig) -> None:
    """执行子命令"""
    assistant = ConversationAssistant(config)
    analysis_type = AnalysisType(args.analysis_type)
    try:
        result: Optional[AnalysisResult] = None
        if args.command == "text":
            result = await assistant.analyze_text(
                read_text(args.source),
                analysis_type=analysis_type,
                structured=args.structured,
                use_ai=not args.offline,
            )
        elif args.command == "image":
            result = await assistant.analyze_image(
                args.image, analysis_type=analysis_type, use_ai=not args.offline,
            )
        elif args.command == "reply":
            mode = CommunicationMode(args.mode) if args.mode else None
            options = await assistant.suggest_replies(read_text(args.source), mode)
            for option in options:
                print(f"\n[{option.id}] {option.title} ({option.tone})")
                print(f"  {option.content}")
                print(f"  - {option.rationale}")
        elif args.command == "history":
            for conversation in assistant.history(args.limit):
                tone = conversation.conversation_tone
                print(
                    f"{conversation.id}  {conversation.timestamp:%Y-%m-%d %H:%M}  "
                    f"{tone.overall_tone.value:<8}  {', '.join(conversation.participants)}"
                )
        elif args.command == "stats":
            print(json.dumps(assistant.get_statistics()["storage"], ensure_ascii=False, indent=2))

        if result is not None:
            print_result(result)
            if args.output:
                with open(args.output, 'w', encoding='utf-8') as f:
                    f.write(result.to_json())
                print(f"\n结果已保存到: {args.output}", file=sys.stderr)
    finally:
        await assistant.close()


def parse_args(argv=None) -> argparse.Namespace:
    """解析命令行参数"""
    parser = argparse.ArgumentParser(
        description='沟通助手 - 聊天截图识别、语气分析与回复建议',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  comm-assistant image screenshot.png --api-key YOUR_API_KEY
  comm-assistant text chat.txt --offline
  comm-assistant reply chat.txt --mode assertive
  cat chat.txt | comm-assistant text - --config config.json -o result.json
  comm-assistant history --limit 10
        """
    )
    parser.add_argument('--api-key', default=os.environ.get(API_KEY_ENV, ''),
                        help=f'DashScope API密钥 (默认读取 {API_KEY_ENV})')
    parser.add_argument('--config', default=None, help='配置文件路径 (JSON格式)')
    parser.add_argument('--store', default=None, help='本地存储文件路径')
    parser.add_argument('--analysis-type', default=AnalysisType.FULL.value,
                        choices=[t.value for t in AnalysisType], help='AI分析深度')
    parser.add_argument('--output', '-o', default=None, help='输出结果文件路径 (JSON格式)')
    parser.add_argument('--verbose', '-v', action='store_true', help='显示详细日志')

    subparsers = parser.add_subparsers(dest='command', required=True)

    text_parser = subparsers.add_parser('text', help='分析文本文件中的对话')
    text_parser.add_argument('source', help='文本文件路径，- 表示标准输入')
    text_parser.add_argument('--structured', action='store_true',
                             help='先清洗OCR噪声并合并续行')
    text_parser.add_argument('--offline', action='store_true', help='只做本地分析，不调用AI')

    image_parser = subparsers.add_parser('image', help='识别并分析聊天截图')
    image_parser.add_argument('image', help='图片文件路径')
    image_parser.add_argument('--offline', action='store_true', help='只识别和本地分析，不调用AI分析')

    reply_parser = subparsers.add_parser('reply', help='为对话生成四种候选回复')
    reply_parser.add_argument('source', help='文本文件路径，- 表示标准输入')
    reply_parser.add_argument('--mode', default=None, choices=[m.value for m in CommunicationMode],
                              help='沟通模式 (默认使用用户资料中的偏好)')

    history_parser = subparsers.add_parser('history', help='列出已保存的对话')
    history_parser.add_argument('--limit', type=int, default=None, help='最多显示条数')

    subparsers.add_parser('stats', help='显示存储统计')

    return parser.parse_args(argv)


def main(argv=None) -> None:
    """主入口函数"""
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.config:
        config = load_config(args.config)
    else:
        needs_key = (
            args.command in ("image", "reply")
            or (args.command == "text" and not args.offline)
        )
        if needs_key and not args.api_key:
            print(f"错误: 请提供 --api-key、{API_KEY_ENV} 或 --config 参数", file=sys.stderr)
            sys.exit(1)
        config = create_default_config(args.api_key)

    if args.store:
        config.storage_config.path = args.store

    if args.command == "image" and not Path(args.image).exists():
        print(f"错误: 图片文件不存在: {args.image}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        print("\n处理被用户中断", file=sys.stderr)
        sys.exit(0)
    except (InsufficientTextError, TextRecognitionError, AIServiceError, StorageError, OSError) as e:
        print(f"错误: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
