# empath/memory/tests/test_data.py shared fixtures data for memory tests
from empath.core.config import VECTORIZATION_CONFIG

HASHING_MODEL = VECTORIZATION_CONFIG["models"]["hashing"]

MEMORY_CASES = [
    {"content": "I love drinking coffee every morning before work", "type": "preference", "importance": 0.6},
    {"content": "My job at the office has been stressful lately", "type": "fact", "importance": 0.8},
    {"content": "Went hiking in the mountains with friends last weekend", "type": "fact", "importance": 0.4},
    {"content": "Feeling anxious about the exam next week", "type": "insight", "importance": 0.7},
    {"content": "Prefers short answers without too much detail", "type": "preference", "importance": 0.9},
]
