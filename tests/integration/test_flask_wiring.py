"""
Flask wiring integration tests.

Drives the test application through the Flask test client: schemas resolved
from requests by validate_request, JSON and redirect answers to failed
validation, flashed errors and old input, and the previous location.
"""

import io
from typing import Annotated

import pytest
import structlog
from flask import Flask, g, jsonify

from request_dto import (
    RequestDTO,
    SchemaFactory,
    Validation,
    ValidationState,
    get_errors,
    old_input,
    request_input,
    validate_request,
)
from request_dto.config import TestingConfig
from request_dto.decorators import expand_bracket_keys
from request_dto.engine import MarshmallowValidationEngine
from tests.fixtures.app import create_action_profile, create_order, create_test_app
from tests.fixtures.schemas import AddressDTO, OrderDTO, ProfileDTO

logger = structlog.get_logger("tests.integration.test_flask_wiring")

pytestmark = pytest.mark.integration


@pytest.fixture
def order_payload():
    """Order input accepted by OrderDTO."""
    return {
        'reference': 'A-100',
        'email': 'ada@example.com',
        'shipping': {'city': 'London'},
        'lines': [{'sku': 'PEN', 'quantity': '2'}],
    }


# ============================================================================
# SUCCESSFUL REQUESTS
# ============================================================================

class TestResolvedSchemas:
    """Views receiving a validated schema."""

    def test_json_request_is_bound_and_injected(self, client, order_payload):
        response = client.post('/orders', json=order_payload)

        assert response.status_code == 201
        assert response.get_json() == {
            'reference': 'A-100',
            'email': 'ada@example.com',
            'shipping': {'city': 'London'},
            'lines': [{'sku': 'PEN', 'quantity': 2}],
        }

    def test_form_request_is_bound(self, client):
        response = client.post('/profiles/action', data={'name': 'Ada', 'age': '36'})

        assert response.status_code == 201
        assert response.get_json() == {'name': 'Ada', 'age': 36}

    def test_bracketed_form_keys_fill_nested_schemas(self, client):
        response = client.post('/orders', data={
            'reference': 'A-100',
            'email': 'ada@example.com',
            'shipping[city]': 'London',
            'lines[0][sku]': 'PEN',
            'lines[0][quantity]': '2',
            'tags[]': ['gift'],
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['shipping'] == {'city': 'London'}
        assert body['lines'] == [{'sku': 'PEN', 'quantity': 2}]
        assert body['tags'] == ['gift']

    def test_schema_is_stored_on_g(self, app, order_payload):
        with app.test_request_context('/orders', method='POST', json=order_payload):
            response, status = create_order()

            assert status == 201
            assert isinstance(g.dto, OrderDTO)
            assert g.dto.validation_state is ValidationState.VALIDATED
            assert isinstance(g.dto.shipping, AddressDTO)

    def test_default_argument_name(self, app):
        with app.test_request_context('/profiles/action', method='POST', data={'name': 'Ada'}):
            response, status = create_action_profile()

            assert status == 201
            assert response.get_json() == {'name': 'Ada'}

    def test_schema_reads_the_active_request(self, app):
        with app.test_request_context('/', method='POST', json={'name': 'Ada', 'age': 36}):
            profile = ProfileDTO(engine=MarshmallowValidationEngine())

            profile.validate_resolved()

            assert profile.to_dict() == {'name': 'Ada', 'age': 36}


# ============================================================================
# FAILED REQUESTS
# ============================================================================

class TestJsonFailures:
    """API clients get the field errors as JSON."""

    def test_json_body(self, client):
        response = client.post('/orders', json={'reference': 'AB', 'email': 'ada@example.com'})

        assert response.status_code == 422
        body = response.get_json()
        assert body['errors'] == {
            'reference': ["Must be at least 3 characters."],
            'shipping.city': ["Missing data for required field."],
        }
        assert body['message'] == "Must be at least 3 characters. (and 1 more error)"

    @pytest.mark.parametrize('headers', [
        {'Accept': 'application/json'},
        {'X-Requested-With': 'XMLHttpRequest'},
    ])
    def test_json_clients_sending_forms(self, client, headers):
        response = client.post('/profiles/action', data={'name': 'A'}, headers=headers)

        assert response.status_code == 422
        assert response.get_json()['errors'] == {'name': ["Must be at least 2 characters."]}

    def test_configured_status(self, app, client):
        app.config['REQUEST_DTO_JSON_ERROR_STATUS'] = 400

        response = client.post('/profiles/action', json={})

        assert response.status_code == 400


class TestRedirectFailures:
    """Browser clients are redirected with errors and old input."""

    def test_redirect_back_to_referrer(self, client):
        response = client.post(
            '/orders',
            data={'reference': 'AB', 'password': 'secret'},
            headers={'Referer': 'http://localhost/orders/new'}
        )

        assert response.status_code == 302
        assert response.headers['Location'] == 'http://localhost/orders/new'

        page = client.get('/orders/new').get_json()
        assert page['errors'] == {
            'reference': ["Must be at least 3 characters."],
            'email': ["Missing data for required field."],
            'shipping.city': ["Missing data for required field."],
        }
        assert page['old'] == {'reference': 'AB'}

    def test_errors_are_shown_once(self, client):
        client.post('/orders', data={'reference': 'AB'})
        client.get('/orders/new')

        page = client.get('/orders/new').get_json()

        assert page == {'errors': {}, 'old': {}}

    def test_uploaded_files_are_left_out_of_old_input(self, client):
        response = client.post(
            '/orders',
            data={
                'reference': 'AB',
                'shipping[city]': 'London',
                'attachments': [(io.BytesIO(b'a'), 'a.txt'), (io.BytesIO(b'b'), 'b.txt')],
            },
            content_type='multipart/form-data'
        )

        assert response.status_code == 302
        assert client.get('/orders/new').get_json()['old'] == {
            'reference': 'AB',
            'shipping': {'city': 'London'},
        }

    def test_redirect_route(self, client):
        response = client.post('/profiles/routed', data={'name': ''})

        assert response.status_code == 302
        assert response.headers['Location'] == '/orders/new'

    def test_redirect_action_with_error_bag(self, client):
        response = client.post('/profiles/action', data={'name': 'A'})

        assert response.headers['Location'] == '/profiles/new'
        assert client.get('/profiles/new').get_json() == {
            'errors': {'name': ["Must be at least 2 characters."]}
        }

    def test_literal_redirect(self, client):
        response = client.post('/codes', data={'code': 'abc'})

        assert response.status_code == 302
        assert response.headers['Location'] == '/somewhere/else'

    def test_fallback_without_previous_location(self, client):
        response = client.post('/orders', data={})

        assert response.headers['Location'] == '/'

    def test_configured_redirect_status(self, app, client):
        app.config['REQUEST_DTO_REDIRECT_STATUS'] = 303

        response = client.post('/codes', data={})

        assert response.status_code == 303

    def test_without_secret_key_nothing_is_flashed(self):
        app = create_test_app(secret_key=None)
        client = app.test_client()

        response = client.post('/codes', data={})

        assert response.status_code == 302
        assert response.headers['Location'] == '/somewhere/else'
        assert 'Set-Cookie' not in response.headers


# ============================================================================
# EXTENSION
# ============================================================================

class TestExtension:
    """RequestDTO setup and the helpers it provides."""

    def test_extension_is_registered(self, app):
        extension = app.extensions['request_dto']

        assert isinstance(extension, RequestDTO)
        assert app.config['REQUEST_DTO_TRACK_PREVIOUS_URL'] is False

    def test_make_uses_shared_collaborators(self, app):
        extension = app.extensions['request_dto']

        with app.test_request_context('/'):
            profile = extension.make(ProfileDTO)

        assert profile._engine is extension.engine
        assert profile._factory is extension.factory
        assert profile.revalidates is True

    def test_make_uses_registered_builders(self):
        factory = SchemaFactory()
        built = []

        def build_profile(revalidate):
            profile = ProfileDTO(revalidate, factory=factory)
            built.append(profile)
            return profile

        factory.register(ProfileDTO, build_profile)
        app = Flask(__name__)
        RequestDTO(app, factory=factory, config_class=TestingConfig)

        @app.post('/profiles')
        @validate_request(ProfileDTO)
        def store(dto):
            return jsonify(same=dto is built[0])

        response = app.test_client().post('/profiles', json={'name': 'Ada'})

        assert response.get_json() == {'same': True}

    def test_app_config_overrides_defaults(self):
        app = Flask(__name__)
        app.config['REQUEST_DTO_FALLBACK_URL'] = '/start'

        RequestDTO(app, config_class=TestingConfig)

        assert app.config['REQUEST_DTO_FALLBACK_URL'] == '/start'
        assert app.config['REQUEST_DTO_REDIRECT_STATUS'] == 302

    def test_previous_url_is_remembered(self):
        class NoteDTO(ProfileDTO):
            pass

        app = Flask(__name__)
        app.config.update(SECRET_KEY='test-secret-key', REQUEST_DTO_TRACK_PREVIOUS_URL=True)
        RequestDTO(app, config_class=TestingConfig)

        @app.get('/notes/new')
        def new_note():
            return jsonify(errors=get_errors(), name=old_input('name', 'none'))

        @app.post('/notes')
        @validate_request(NoteDTO)
        def store_note(dto):
            return jsonify(dto.to_dict()), 201

        client = app.test_client()
        client.get('/notes/new')
        response = client.post('/notes', data={'name': 'A'})

        assert response.headers['Location'] == 'http://localhost/notes/new'
        assert client.get('/notes/new').get_json() == {
            'errors': {'name': ["Must be at least 2 characters."]},
            'name': 'A',
        }


class TestRequestInput:
    """Gathering raw input from the active request."""

    def test_sources_are_merged(self, app):
        with app.test_request_context('/?page=2&tags[]=a&tags[]=b', method='POST', data={'name': 'Ada'}):
            assert request_input() == {'page': '2', 'tags': ['a', 'b'], 'name': 'Ada'}

    def test_repeated_keys_become_lists(self, app):
        with app.test_request_context('/?tag=a&tag=b'):
            assert request_input() == {'tag': ['a', 'b']}

    def test_json_body_wins(self, app):
        with app.test_request_context('/?name=query', method='POST', json={'name': 'json', 'age': 3}):
            assert request_input() == {'name': 'json', 'age': 3}

    def test_non_object_json_body_is_ignored(self, app):
        with app.test_request_context('/?name=query', method='POST', json=['a', 'b']):
            assert request_input() == {'name': 'query'}

    def test_bracketed_keys_are_nested(self, app):
        data = {'shipping[city]': 'London', 'lines[1][sku]': 'INK', 'lines[0][sku]': 'PEN'}
        with app.test_request_context('/', method='POST', data=data):
            assert request_input() == {
                'shipping': {'city': 'London'},
                'lines': [{'sku': 'PEN'}, {'sku': 'INK'}],
            }

    def test_bracketed_key_replaces_plain_key(self):
        assert expand_bracket_keys({'shipping': 'x', 'shipping[city]': 'Leeds'}) == {
            'shipping': {'city': 'Leeds'},
        }

    def test_non_numeric_levels_stay_mappings(self):
        assert expand_bracket_keys({'meta[0]': 'a', 'meta[x]': 'b'}) == {'meta': {'0': 'a', 'x': 'b'}}
