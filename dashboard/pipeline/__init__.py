from .controller import PipelineRunController
from .change_feed import ChangeFeedListener
from .webhook import PipelineWebhookClient, WebhookOutcome

__all__ = ['PipelineRunController', 'ChangeFeedListener', 'PipelineWebhookClient', 'WebhookOutcome']
