"""테스트 지원 모듈"""
