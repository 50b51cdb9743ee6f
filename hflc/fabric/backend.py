# SPDX-License-Identifier: Apache-2.0

from abc import ABCMeta, abstractmethod


class LedgerBackend(object, metaclass=ABCMeta):
    """ The remote primitives of a ledger network.

    Every method is a coroutine that returns its result or raises a
    LedgerError. Failures that may succeed when retried are raised as
    TransientError. Requests are signed by the caller; see
    hflc.fabric.transaction.tx_request for their layout.
    """

    @abstractmethod
    async def save_channel(self, orderer, envelope):
        """Submit a channel configuration to the ordering service.

        :param orderer: Orderer
        :param envelope: dict with `channel_id`, `tx_id`, `config_tx` bytes
         and `signatures`, a list of {'creator', 'signature'} over
         `config_tx`
        :raises ConfigurationError: malformed configuration
        :raises AuthorizationError: a signer may not create channels
        :raises AlreadyExistsError: the channel already exists
        """

    @abstractmethod
    async def join_channel(self, peer, signed_proposal):
        """Make a peer join a channel.

        The proposal targets the `cscc` system chaincode with function
        `JoinChain` and arguments [channel_id, orderer_endpoint].
        """

    @abstractmethod
    async def query_installed_chaincodes(self, peer, signed_proposal):
        """List the chaincodes installed on a peer.

        :return: list of dict with `name`, `version`, `path`, `code_hash`
        """

    @abstractmethod
    async def install_chaincode(self, peer, signed_proposal, code):
        """Install a chaincode package on a peer.

        :param code: the tar.gz bytes of the package
        """

    @abstractmethod
    async def instantiate_chaincode(self, peers, orderer, signed_proposal):
        """Endorse, order and commit the first instance of a chaincode on
        a channel. The proposal `deployment` carries name, version and
        endorsement policy, its args are the init arguments.

        :raises AlreadyInstantiatedError: an instance exists
        :raises NotInstalledError: the version is not installed
        :raises PolicyError: the policy names an unknown organization
        """

    @abstractmethod
    async def upgrade_chaincode(self, peers, orderer, signed_proposal):
        """Replace the active instance of a chaincode with a new version.

        :raises NotInstalledError: the version is missing on an
         organization of the new policy
        """

    @abstractmethod
    async def query_chaincode_definition(self, peer, signed_proposal):
        """Get the active instance of a chaincode on a channel.

        :return: dict with `name`, `version` and `policy`, or None
        """

    @abstractmethod
    async def send_proposal(self, peer, signed_proposal):
        """Simulate a chaincode invocation on a peer.

        :return: ProposalResponse
        """

    @abstractmethod
    async def broadcast(self, orderer, envelope):
        """Submit an endorsed transaction for ordering.

        Returns once the orderer accepted the transaction.
        """

    @abstractmethod
    async def deliver(self, peer, channel_id, start=None):
        """Open a stream of the filtered blocks committed on a peer.

        :param start: first block number, None for new blocks only
        :return: async iterator of filtered block dicts
         {'number', 'filtered_transactions': [{'txid',
         'tx_validation_code', 'transaction_actions':
         {'chaincode_actions': [{'chaincode_event': {...}}]}}]}
        """
