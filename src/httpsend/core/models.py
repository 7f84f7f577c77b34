from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from httpsend.http.client.descriptor import RequestDescriptor


@dataclass(slots=True)
class AttemptContext:
    """
    Per-dispatch state threaded through retries and redirect hops.

    Starts at the descriptor's url/method/body and is advanced by the redirect
    follower, so a retry resumes from the current redirect target.
    """
    descriptor: RequestDescriptor
    url: str
    method: str
    headers: Mapping[str, str]
    body: Optional[bytes] = None

    attempt: int = 0
    hops: List[str] = field(default_factory=list)

    @classmethod
    def start(cls, descriptor: RequestDescriptor) -> "AttemptContext":
        return cls(
            descriptor=descriptor,
            url=descriptor.url,
            method=descriptor.method,
            headers=dict(descriptor.headers),
            body=descriptor.body,
        )
