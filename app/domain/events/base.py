"""
Domain Event Base Class
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import ClassVar, Dict
import json


@dataclass
class DomainEvent:
    """Domain Event 기본 클래스"""
    timestamp: datetime

    # WebSocket 프레임의 "type" 값
    event_type: ClassVar[str] = "event"

    def to_dict(self) -> Dict:
        """Event를 dict로 변환"""
        data = asdict(self)
        # datetime을 ISO 형식 문자열로 변환
        data['timestamp'] = self.timestamp.isoformat()
        # Event 타입 추가 (Consumer에서 라우팅용)
        data['__event_type__'] = self.__class__.__name__
        return data

    def to_json(self) -> str:
        """Event를 JSON으로 변환"""
        return json.dumps(self.to_dict())

    def to_frame(self) -> Dict:
        """WebSocket으로 전송할 프레임"""
        data = self.to_dict()
        data.pop('__event_type__', None)
        data['type'] = self.event_type
        return data

    @classmethod
    def from_dict(cls, data: Dict):
        """dict에서 Event 복원"""
        data = dict(data)
        # timestamp를 datetime으로 변환
        if 'timestamp' in data and isinstance(data['timestamp'], str):
            data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        # __event_type__ 제거
        data.pop('__event_type__', None)
        data.pop('type', None)
        return cls(**data)
