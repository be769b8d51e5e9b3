"""Shared fixtures: a small cultivation-fantasy save in its camelCase form."""
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from loreweaver.engine.state import GameState


PC = {
    "name": "Lâm Phong",
    "type": "pc",
    "location": "Rừng Sương",
    "personality": "Điềm tĩnh",
    "motivation": "Tìm lại sư phụ",
    "realm": "Trúc Cơ",
    "learnedSkills": ["Kiếm Pháp (Sơ Thành)"],
}
COMPANION = {
    "name": "Tiểu Vân",
    "type": "companion",
    "relationship": "Bạn đồng hành thân thiết",
    "skills": "Pháp thuật băng, Do thám",
    "realm": "Trúc Cơ",
    "personality": "Hoạt bát",
}


def make_raw_state():
    """Fresh raw save dict; tests mutate their own copy."""
    story = (
        "Lâm Phong đã bước vào Rừng Sương cùng Tiểu Vân. "
        "Tiếng Con Sói tru vang từ xa khiến cả hai cảnh giác."
    )
    return {
        "worldData": {"worldName": "Thiên Vực", "genre": "tu tiên"},
        "turnCount": 12,
        "gameTime": {"year": 3, "month": 4, "day": 5, "hour": 8, "minute": 30},
        "party": [dict(PC), dict(COMPANION)],
        "knownEntities": {
            "Lâm Phong": dict(PC),
            "Tiểu Vân": dict(COMPANION),
            "Con Sói": {
                "name": "Con Sói",
                "type": "npc",
                "description": "Một con sói xám hung dữ canh giữ Rừng Sương",
                "location": "Rừng Sương",
            },
            "Rừng Sương": {"name": "Rừng Sương", "type": "location", "description": "Khu rừng phủ sương mù dày đặc"},
            "Kiếm Pháp": {"type": "skill", "mastery": "Sơ Thành", "description": "Kiếm pháp nhập môn"},
            "Thanh Kiếm": {"name": "Thanh Kiếm", "type": "item", "owner": "Lâm Phong", "description": "Một thanh kiếm sắt cũ"},
        },
        "quests": [{
            "title": "Săn sói",
            "objectives": [{"description": "Tiêu diệt Con Sói", "completed": False}],
            "status": "active",
        }],
        "memories": [
            {"text": "Lâm Phong gặp Tiểu Vân ở làng", "createdAt": 2, "category": "social",
             "relatedEntities": ["Tiểu Vân"]},
            {"text": "Sư phụ để lại lời nhắn bí mật", "pinned": True, "createdAt": 1},
            {"text": "Con Sói tấn công đoàn buôn trong rừng", "createdAt": 10, "category": "combat",
             "relatedEntities": ["Con Sói"], "source": "chronicle"},
        ],
        "gameHistory": [
            {"role": "user", "parts": [{"text": "ACTION: đi vào rừng"}]},
            {"role": "model", "parts": [{"text": json.dumps(
                {"story": story, "location_update": {"new_location": "Rừng Sương"}}, ensure_ascii=False)}]},
        ],
        "statuses": [{"name": "Mệt mỏi", "owner": "pc"}],
        "chronicle": {"memoir": ["Lâm Phong rời tông môn"], "chapter": ["Chương 1: Rừng Sương"], "turn": []},
        "choiceHistory": [
            {"turn": 11, "choices": ["Đi về làng", "Hỏi Tiểu Vân về con đường"], "selectedChoice": "Hỏi Tiểu Vân về con đường"},
        ],
        "compressedHistory": [
            {"turnRange": "1-5", "recentChoices": ["Mua thuốc ở chợ"], "storyFlow": ["Lâm Phong rời tông môn"]},
        ],
        "customRules": [
            {"id": "r1", "title": "Sói đêm", "content": "Sói mạnh hơn vào ban đêm.", "keywords": ["sói"], "order": 5},
        ],
    }


@pytest.fixture
def raw_state():
    return make_raw_state()


@pytest.fixture
def state(raw_state):
    return GameState.from_raw(raw_state)
