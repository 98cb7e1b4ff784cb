# empath/global_vars.py process-wide service instances, set up on startup
from typing import Any, Dict, Optional

from empath.protocols.memory import MemoryManager
from empath.protocols.services import DecisionService, ProactiveMessageService, ReflectionService

memory_manager: Optional[MemoryManager] = None
decision_service: Optional[DecisionService] = None
reflection_service: Optional[ReflectionService] = None
proactive_service: Optional[ProactiveMessageService] = None
# overrides for PIPELINE_CONFIG applied to every new conversation
pipeline_settings: Dict[str, Any] = {}
