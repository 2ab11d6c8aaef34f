"""
Flask extension wiring schemas into an application.

    request_dto = RequestDTO()

    def create_app():
        app = Flask(__name__)
        request_dto.init_app(app)
        return app

The extension owns the validation engine and the schema factory shared by
every request, builds the failure location resolver from the application
configuration, and turns ValidationFailure into a response: a JSON body
with the field errors for API clients, or a redirect with the errors and
the old input flashed into the session for browser clients.
"""

from typing import Any, Dict, List, Mapping, Optional, Type

import structlog
from flask import Flask, current_app, flash, get_flashed_messages, jsonify, redirect, request, session
from werkzeug.datastructures import FileStorage

from request_dto.binder import SchemaFactory
from request_dto.config import BaseConfig, get_config
from request_dto.engine import MarshmallowValidationEngine, ValidationEngine
from request_dto.exceptions import ValidationFailure
from request_dto.redirects import PREVIOUS_URL_SESSION_KEY, FlaskRedirector
from request_dto.schema import DataTransferObject

logger = structlog.get_logger("request_dto.extension")

EXTENSION_NAME = "request_dto"
ERRORS_CATEGORY_PREFIX = "request_dto.errors:"
OLD_INPUT_CATEGORY = "request_dto.old_input"

# Input keys never kept as old input
DONT_FLASH = ('password', 'password_confirmation', 'current_password')


def wants_json() -> bool:
    """Whether the active request expects a JSON answer."""
    if request.is_json:
        return True
    if request.headers.get('X-Requested-With') == 'XMLHttpRequest':
        return True
    return request.accept_mimetypes.best == 'application/json'


def _contains_file(value: Any) -> bool:
    if isinstance(value, FileStorage):
        return True
    if isinstance(value, Mapping):
        return any(_contains_file(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(_contains_file(item) for item in value)
    return False


def _flashable_input(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Input safe to keep in the session: no passwords, no uploaded files."""
    flashable: Dict[str, Any] = {}
    for key, value in data.items():
        if key in DONT_FLASH:
            continue
        if isinstance(value, Mapping):
            flashable[key] = _flashable_input(value)
        elif not _contains_file(value):
            flashable[key] = value
    return flashable


def get_errors(bag: str = "default") -> Dict[str, List[str]]:
    """
    Field errors flashed by the previous failed request.

    Args:
        bag: Error bag name

    Returns:
        Errors keyed by dotted path (empty when there are none)
    """
    errors: Dict[str, List[str]] = {}
    for payload in get_flashed_messages(category_filter=[f"{ERRORS_CATEGORY_PREFIX}{bag}"]):
        errors.update(payload)
    return errors


def old_input(key: Optional[str] = None, default: Any = None) -> Any:
    """Input flashed by the previous failed request, whole or by key."""
    data: Dict[str, Any] = {}
    for payload in get_flashed_messages(category_filter=[OLD_INPUT_CATEGORY]):
        data.update(payload)
    if key is None:
        return data
    return data.get(key, default)


class RequestDTO:
    """
    Flask extension for request schemas.

    Args:
        app: Application to initialise immediately
        engine: Validation engine shared by all schemas
        factory: Factory for schema instances (register builders on it for
            schemas that need collaborators)
        config_class: Source of configuration defaults (selected from
            FLASK_ENV when omitted)
    """

    def __init__(
        self,
        app: Optional[Flask] = None,
        engine: Optional[ValidationEngine] = None,
        factory: Optional[SchemaFactory] = None,
        config_class: Optional[Type[BaseConfig]] = None
    ) -> None:
        self.engine = engine or MarshmallowValidationEngine()
        self.factory = factory or SchemaFactory()
        self.config_class = config_class
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        config_class = self.config_class or get_config()
        for key, value in config_class().as_dict().items():
            app.config.setdefault(key, value)

        app.extensions[EXTENSION_NAME] = self
        app.register_error_handler(ValidationFailure, self.handle_validation_failure)
        app.context_processor(lambda: {'dto_errors': get_errors, 'old_input': old_input})

        if app.config['REQUEST_DTO_TRACK_PREVIOUS_URL']:
            app.after_request(self.remember_previous_url)

        logger.info(
            "Request DTO extension initialized",
            app=app.name,
            engine=type(self.engine).__name__,
            config_class=config_class.__name__,
        )

    def redirector(self) -> FlaskRedirector:
        """Failure location resolver configured for the current application."""
        return FlaskRedirector(
            fallback_url=current_app.config['REQUEST_DTO_FALLBACK_URL'],
            external=current_app.config['REQUEST_DTO_EXTERNAL_URLS']
        )

    def make(self, schema_type: Type[DataTransferObject], revalidate: bool = True) -> DataTransferObject:
        """
        Build a schema instance for the current request.

        Types registered on the factory are built by their builder; other
        types receive the shared engine, factory and a configured redirector.
        """
        if schema_type in self.factory:
            return self.factory(schema_type, revalidate=revalidate)
        return schema_type(
            revalidate,
            factory=self.factory,
            engine=self.engine,
            redirector=self.redirector()
        )

    def handle_validation_failure(self, error: ValidationFailure):
        """Answer a failed validation with a JSON error body or a redirect."""
        if wants_json():
            response = jsonify(error.to_dict())
            response.status_code = current_app.config['REQUEST_DTO_JSON_ERROR_STATUS']
            return response

        if current_app.secret_key:
            from request_dto.decorators import request_input

            flash(error.errors, f"{ERRORS_CATEGORY_PREFIX}{error.error_bag}")
            flash(_flashable_input(request_input()), OLD_INPUT_CATEGORY)
        else:
            logger.warning(
                "No secret key configured, validation errors are not kept for the next request",
                endpoint=request.endpoint,
            )

        return redirect(
            error.redirect_to or current_app.config['REQUEST_DTO_FALLBACK_URL'],
            code=current_app.config['REQUEST_DTO_REDIRECT_STATUS']
        )

    def remember_previous_url(self, response):
        """Store the URL of successful GET pages as the previous location."""
        if (
            request.method == 'GET'
            and response.status_code < 400
            and current_app.secret_key
            and not wants_json()
        ):
            session[PREVIOUS_URL_SESSION_KEY] = request.url
        return response
