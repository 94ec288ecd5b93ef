from jobrelay.client.client import Client, JobHandle
from jobrelay.client.coalesce import RequestCoalescer
from jobrelay.client.poller import PollerSnapshot, StatusPoller, StopReason
