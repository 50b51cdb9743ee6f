# SPDX-License-Identifier: Apache-2.0

CC_INSTALL = "install"
CC_INSTANTIATE = "deploy"
CC_INVOKE = "invoke"
CC_UPGRADE = "upgrade"
CC_QUERY = "query"
CC_INIT = "init"

CC_TYPE_GOLANG = "GOLANG"

DEFAULT_WAIT_FOR_EVENT_TIMEOUT = 20  # s

# retry defaults, delays in seconds
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF = 0.5
DEFAULT_MAX_BACKOFF = 60.0
DEFAULT_BACKOFF_FACTOR = 2.0

SUCCESS_STATUS = 200
ERROR_STATUS = 500

TX_STATUS_VALID = 'VALID'
TX_STATUS_ENDORSEMENT_POLICY_FAILURE = 'ENDORSEMENT_POLICY_FAILURE'

ROLE_MEMBER = 'member'
ROLE_ADMIN = 'admin'
ROLE_PEER = 'peer'
