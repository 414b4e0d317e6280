"""
Configuration module for the DAG test runner.
Loads settings from environment variables or .env file.
DAG 测试运行器配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- LLM API Configuration (step generation) ---
# --- LLM API 配置（步骤生成）---
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")  # OpenAI-compatible API base URL / OpenAI 兼容接口地址
LLM_API_KEY = os.getenv("LLM_API_KEY", "")                               # API key / API 密钥
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")                        # Model name / 模型名称
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))            # 步骤生成的采样温度

# --- Step Execution ---
# --- 步骤执行参数 ---
STEP_TIMEOUT = int(os.getenv("STEP_TIMEOUT", "60"))  # 单个 subtask 的 shell 命令超时时间（秒）
MAX_OUTPUT_CHARS = int(os.getenv("MAX_OUTPUT_CHARS", "4000"))  # 结果中保留的输出字符上限

# --- Reporting ---
# --- 报告输出 ---
REPORT_DIR = os.path.expanduser(os.getenv("REPORT_DIR", "./reports"))  # 报告输出目录
REPORT_FORMATS = [
    f.strip() for f in os.getenv("REPORT_FORMATS", "json").split(",") if f.strip()
]  # 默认生成的报告格式，逗号分隔：json, junit
