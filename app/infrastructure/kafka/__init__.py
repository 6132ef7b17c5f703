"""
Kafka Infrastructure

Producer, Config 등 Kafka 관련 인프라 코드
"""

from .producer import DomainEventProducer, get_event_producer, topic_for
from .config import KafkaConfig, kafka_config

__all__ = [
    'DomainEventProducer',
    'get_event_producer',
    'topic_for',
    'KafkaConfig',
    'kafka_config',
]
