from contract_deployer.queues.consumer import ProcessOutcome, ProcessStatus, QueueDepths, RedisQueueConsumer
from contract_deployer.queues.publisher import EventPublisher

__all__ = ["EventPublisher", "ProcessOutcome", "ProcessStatus", "QueueDepths", "RedisQueueConsumer"]
