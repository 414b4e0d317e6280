from .base import BaseStepExecutor
from .shell import ShellStepExecutor
from .generation import GenerationStepExecutor
from .router import StepRouter
