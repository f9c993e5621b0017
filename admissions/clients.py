"""HTTP clients for the identifier, account and class services.

Each client takes its base URL and bearer token explicitly; nothing is read
from ambient state. Responses use the ``{"success": ..., "data": ...}``
envelope of the user and class services.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from admissions.config import settings
from admissions.core.errors import DependencyFailure, DuplicateEmail, ValidationError
from admissions.models import CounterKind
from admissions.services.account_service import AccountService
from admissions.services.class_service import ClassService, SectionInfo
from admissions.services.identifier_service import CounterScope, IdentifierAllocator, parse_counter_kind


logger = logging.getLogger(__name__)


class _ServiceClient:
    service_name = 'service'

    def __init__(
        self,
        base_url: str,
        *,
        bearer_token: str = '',
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = settings.http_timeout_seconds if timeout is None else timeout
        self.headers = {'Accept': 'application/json'}
        if bearer_token:
            self.headers['Authorization'] = f'Bearer {bearer_token}'
        self._transport = transport

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
                transport=self._transport,
            ) as client:
                res = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning(
                'service_request_failed',
                extra={'service': self.service_name, 'path': path, 'error': str(exc)},
            )
            raise DependencyFailure(self.service_name, f'{self.service_name} service is unreachable') from exc

        body = self._json(res)
        message = str(body.get('message') or body.get('detail') or '') if isinstance(body, dict) else ''
        if res.status_code == 409:
            raise DuplicateEmail(message or 'An account already exists for this email', field='email')
        if res.status_code in (400, 422):
            raise ValidationError(message or 'Request rejected by the service', field=body.get('field') if isinstance(body, dict) else None)
        if res.status_code >= 400:
            logger.warning(
                'service_request_failed',
                extra={'service': self.service_name, 'path': path, 'status_code': res.status_code},
            )
            raise DependencyFailure(
                self.service_name,
                message or f'{self.service_name} service returned {res.status_code}',
            )
        if isinstance(body, dict) and body.get('success') is False:
            raise DependencyFailure(self.service_name, message or f'{self.service_name} service reported a failure')
        return body.get('data') if isinstance(body, dict) else body

    def _json(self, res: httpx.Response) -> Any:
        try:
            return res.json()
        except ValueError:
            return {}


class HttpIdentifierAllocator(_ServiceClient, IdentifierAllocator):
    """``GET`` on the generator returns the hint, ``POST`` consumes a value."""

    service_name = 'identifiers'

    def _params(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None) -> dict:
        params = {'institutionId': str(institution_id), 'idType': parse_counter_kind(kind).value}
        if scope is not None:
            params['classId'] = str(scope.class_id)
            params['sectionId'] = str(scope.section_id)
        return params

    def _identifier(self, data: Any, kind: CounterKind | str) -> str:
        if isinstance(data, dict):
            value = data.get('id') or data.get(parse_counter_kind(kind).value)
            if value:
                return str(value)
        raise DependencyFailure(self.service_name, 'Identifier service returned no identifier')

    def next(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None = None) -> str:
        data = self._request('POST', '/users/id-generator/next', params=self._params(institution_id, kind, scope))
        return self._identifier(data, kind)

    def peek(self, institution_id: int, kind: CounterKind | str, scope: CounterScope | None = None) -> str:
        data = self._request('GET', '/users/id-generator/next', params=self._params(institution_id, kind, scope))
        return self._identifier(data, kind)


class HttpAccountService(_ServiceClient, AccountService):
    service_name = 'accounts'

    def create(
        self,
        *,
        email: str,
        password: str,
        role: str,
        profile_fields: dict | None = None,
        institution_id: int | None = None,
    ) -> int:
        profile = dict(profile_fields or {})
        body = {
            'email': email,
            'password': password,
            'role': role,
            'firstName': profile.pop('first_name', ''),
            'lastName': profile.pop('last_name', ''),
            'phone': profile.pop('phone', ''),
            'institution': institution_id,
            'profile': profile,
        }
        data = self._request('POST', '/users', json=body)
        account_id = data.get('id') if isinstance(data, dict) else None
        if account_id is None:
            raise DependencyFailure(self.service_name, 'Account service returned no account id')
        return int(account_id)

    def assign_student_profile(
        self,
        account_id: int,
        *,
        class_id: int,
        section_id: int,
        roll_number: str,
        admission_number: str,
    ) -> None:
        self._request(
            'PUT',
            f'/users/{int(account_id)}',
            json={
                'studentProfile': {
                    'class': class_id,
                    'section': section_id,
                    'rollNumber': roll_number,
                    'admissionNumber': admission_number,
                }
            },
        )


class HttpClassService(_ServiceClient, ClassService):
    service_name = 'classes'

    def get_sections(self, class_id: int) -> list[SectionInfo]:
        data = self._request('GET', f'/classes/{int(class_id)}/sections') or []
        return [
            SectionInfo(
                id=int(item['id']),
                class_id=int(class_id),
                name=str(item.get('name') or ''),
                capacity=int(item.get('capacity') or 0),
            )
            for item in data
        ]

    def get_class_name(self, class_id: int) -> str:
        data = self._request('GET', f'/classes/{int(class_id)}') or {}
        return str(data.get('name') or '')
