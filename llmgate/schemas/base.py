from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    基础 Schema
    配置:
    - from_attributes=True: 允许从 ORM 对象读取
    - populate_by_name=True: 兼容别名与字段名
    """
    model_config = ConfigDict(from_attributes=True, strict=False, populate_by_name=True, extra="ignore")

class FrozenSchema(BaseSchema):
    """产出后不可变的值对象（响应、交接包等）"""
    model_config = ConfigDict(
        from_attributes=True, strict=False, populate_by_name=True, extra="ignore", frozen=True
    )
