# shared/api_markers.py
"""
API 문서화용 마커 시리얼라이저들.

@extend_schema 에서 본문이 없거나 단순한 응답을 표현할 때 쓴다.
"""
from rest_framework import serializers


class EmptySerializer(serializers.Serializer):
    """본문이 없는 요청/응답에 쓰는 더미 시리얼라이저"""

    pass


class SuccessResponseSerializer(serializers.Serializer):
    """웹훅 수신 응답: 항상 {"success": true}"""

    success = serializers.BooleanField()


class ErrorResponseSerializer(serializers.Serializer):
    detail = serializers.CharField()
    code = serializers.CharField(required=False)
