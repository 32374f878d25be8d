"""의존성 주입 컨테이너"""
from typing import Any, Callable, Dict, Type, TypeVar
import inspect

T = TypeVar('T')


class DIContainer:
    """간단한 의존성 주입 컨테이너"""

    def __init__(self):
        self._singletons: Dict[Any, Any] = {}
        self._factories: Dict[Any, Callable[[], Any]] = {}
        self._services: Dict[Any, Type] = {}

    def register_singleton(self, key: Any, implementation: Any) -> None:
        """싱글톤 인스턴스 등록 (타입 또는 이름 키)"""
        self._singletons[key] = implementation

    def register_transient(self, key: Any, factory_func: Callable[[], Any]) -> None:
        """팩토리 함수 등록 (매번 새 인스턴스 생성)"""
        self._factories[key] = factory_func

    def register_service(self, key: Any, service_class: Type[T]) -> None:
        """서비스 클래스 등록 (생성자 타입 힌트로 의존성 해결)"""
        self._services[key] = service_class

    def has(self, key: Any) -> bool:
        return key in self._singletons or key in self._factories or key in self._services

    def get(self, key: Any) -> Any:
        """서비스 인스턴스 조회"""
        if key in self._singletons:
            return self._singletons[key]

        if key in self._factories:
            return self._factories[key]()

        if key in self._services:
            instance = self._create_instance(self._services[key])
            self._singletons[key] = instance
            return instance

        name = getattr(key, "__name__", repr(key))
        raise ValueError(f"Service {name} not registered")

    def get_optional(self, key: Any) -> Any:
        try:
            return self.get(key)
        except ValueError:
            return None

    def reset(self) -> None:
        """등록 정보 전체 초기화 (테스트용)"""
        self._singletons.clear()
        self._factories.clear()
        self._services.clear()

    def _create_instance(self, service_class: Type[T]) -> T:
        """등록된 타입만 주입하고, 나머지는 기본값을 사용"""
        sig = inspect.signature(service_class.__init__)

        kwargs = {}
        for param_name, param in sig.parameters.items():
            if param_name == 'self' or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue

            annotation = param.annotation
            if annotation is not inspect.Parameter.empty and self.has(annotation):
                kwargs[param_name] = self.get(annotation)
            elif param.default is not inspect.Parameter.empty:
                kwargs[param_name] = param.default
            else:
                raise ValueError(
                    f"Cannot resolve dependency {param_name} for {service_class.__name__}"
                )

        return service_class(**kwargs)


# 전역 컨테이너 인스턴스
container = DIContainer()
